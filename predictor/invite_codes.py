import logging
from typing import Optional

from shared.errors import Conflict, NotFound, InvalidInviteCode
from .identifiers import generate_invite_code, normalize_invite_code
from .models import db, PredictionGroup, GroupInvite

logger = logging.getLogger(__name__)


class InviteCodeService:
    """
    Issues and resolves prediction-group invite codes.

    A group holds at most one code; rotation replaces it in place so the
    previous code stops resolving immediately. All methods run inside the
    caller's transaction and only flush; committing (and re-running on a
    code collision caught by the unique constraint) is the caller's job.
    """

    def __init__(self, session=None, code_length: int = 10, max_attempts: int = 5):
        self.session = session or db.session
        self.code_length = code_length
        self.max_attempts = max_attempts

    def _invite_for(self, group_id: int, lock: bool = False) -> Optional[GroupInvite]:
        query = db.select(GroupInvite).filter_by(group_id=group_id)
        if lock:
            query = query.with_for_update()
        return self.session.scalars(query).first()

    def _code_taken(self, code: str) -> bool:
        return self.session.scalars(
            db.select(GroupInvite.id).filter_by(code=code)
        ).first() is not None

    def _unused_code(self) -> str:
        for attempt in range(1, self.max_attempts + 1):
            code = generate_invite_code(self.code_length)
            if not self._code_taken(code):
                return code
            logger.warning(f"Invite code collision on attempt {attempt}, regenerating")
        raise Conflict("Could not generate a unique invite code")

    def get_code(self, group_id: int) -> Optional[str]:
        invite = self._invite_for(group_id)
        return invite.code if invite else None

    def generate(self, group_id: int) -> GroupInvite:
        """Create the first code for a group. Groups that already have one must rotate."""
        if self.session.get(PredictionGroup, group_id) is None:
            raise NotFound("Group not found")
        if self._invite_for(group_id) is not None:
            raise Conflict("Group already has an invite code; rotate it instead")

        invite = GroupInvite(group_id=group_id, code=self._unused_code())
        self.session.add(invite)
        self.session.flush()
        logger.info(f"Generated invite code for group {group_id}")
        return invite

    def rotate(self, group_id: int) -> GroupInvite:
        """Replace a group's code; the old one is invalid as soon as this commits."""
        invite = self._invite_for(group_id, lock=True)
        if invite is None:
            raise NotFound("Group has no invite code to rotate")

        invite.code = self._unused_code()
        self.session.flush()
        logger.info(f"Rotated invite code for group {group_id}")
        return invite

    def resolve(self, code: str) -> int:
        normalized = normalize_invite_code(code)
        if not normalized:
            raise InvalidInviteCode()
        invite = self.session.scalars(
            db.select(GroupInvite).filter_by(code=normalized)
        ).first()
        if invite is None:
            raise InvalidInviteCode()
        return invite.group_id
