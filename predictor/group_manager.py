import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError

from shared.errors import (
    AlreadyMember, Conflict, Forbidden, GroupFull, InvalidState, NotFound, NotMember, ValidationError
)
from shared.events import EventType, membership_event, publish
from .invite_codes import InviteCodeService
from .models import db, PredictionGroup, GroupMember, GroupInvite, Tournament, User
from .transaction import TransactionRunner

logger = logging.getLogger(__name__)


class GroupManager:
    """
    Prediction groups and their rosters.

    Capacity is enforced by claiming a seat with a single conditional UPDATE
    on prediction_groups.member_count inside the join transaction; the row
    lock that UPDATE takes linearizes concurrent joins, and the unique
    (group_id, user_id) constraint rejects duplicate rows. Every roster
    change keeps member_count equal to the number of membership rows.
    """

    def __init__(
        self,
        session=None,
        invite_codes: InviteCodeService = None,
        transactions: TransactionRunner = None,
        max_members: int = 500,
        redis_client=None
    ):
        self.session = session or db.session
        self.invite_codes = invite_codes or InviteCodeService(self.session)
        self.transactions = transactions or TransactionRunner(self.session)
        self.max_members = max_members
        self.redis = redis_client

    # ==================== Lookups ====================

    def get_group(self, group_id: int) -> PredictionGroup:
        group = self.session.get(PredictionGroup, group_id)
        if group is None:
            raise NotFound("Group not found")
        return group

    def _membership(self, group_id: int, user_id: int) -> Optional[GroupMember]:
        return self.session.scalars(
            db.select(GroupMember).filter_by(group_id=group_id, user_id=user_id)
        ).first()

    def _require_group_admin(self, group: PredictionGroup, user_id: int):
        if group.admin_id != user_id:
            raise Forbidden("Only the group admin can do that")

    def is_member(self, group_id: int, user_id: int) -> bool:
        return self._membership(group_id, user_id) is not None

    def list_members(self, group_id: int) -> List[User]:
        self.get_group(group_id)
        return list(self.session.scalars(
            db.select(User)
            .join(GroupMember, GroupMember.user_id == User.id)
            .where(GroupMember.group_id == group_id)
            .order_by(GroupMember.joined_at, User.id)
        ))

    def list_groups_for_user(self, user_id: int, tournament_id: int = None) -> List[PredictionGroup]:
        query = (
            db.select(PredictionGroup)
            .join(GroupMember, GroupMember.group_id == PredictionGroup.id)
            .where(GroupMember.user_id == user_id)
        )
        if tournament_id is not None:
            query = query.where(PredictionGroup.tournament_id == tournament_id)
        return list(self.session.scalars(query.order_by(PredictionGroup.id)))

    def preview_group_by_code(self, code: str) -> dict:
        """What a prospective member sees before joining."""
        group = self.get_group(self.invite_codes.resolve(code))
        return {
            'group': group.to_dict(),
            'tournament': group.tournament.to_dict(),
            'admin': {'id': group.admin.id, 'name': group.admin.name},
            'member_count': group.member_count,
            'is_full': group.member_count >= self.max_members,
        }

    # ==================== Group lifecycle ====================

    def create_group(self, user_id: int, tournament_id: int, name: str) -> PredictionGroup:
        """Create a group, enrol its creator as admin and first member, and issue an invite code."""
        name = (name or '').strip()
        if not name:
            raise ValidationError("Group name is required")

        def work():
            if self.session.get(Tournament, tournament_id) is None:
                raise NotFound("Tournament not found")
            if self.session.get(User, user_id) is None:
                raise NotFound("User not found")

            group = PredictionGroup(
                name=name,
                admin_id=user_id,
                tournament_id=tournament_id,
                member_count=1
            )
            self.session.add(group)
            self.session.flush()
            self.session.add(GroupMember(group_id=group.id, user_id=user_id))
            self.invite_codes.generate(group.id)
            return group

        try:
            group = self.transactions.run(work, retry_on=(IntegrityError,))
        except IntegrityError:
            raise Conflict("Could not create group")

        logger.info(f"User {user_id} created group {group.id} in tournament {tournament_id}")
        return group

    def rename_group(self, group_id: int, user_id: int, name: str) -> PredictionGroup:
        name = (name or '').strip()
        if not name:
            raise ValidationError("Group name is required")

        def work():
            group = self.get_group(group_id)
            self._require_group_admin(group, user_id)
            group.name = name
            return group

        return self.transactions.run(work)

    def delete_group(self, group_id: int, admin_id: int):
        """Delete a group together with its memberships and invite code."""
        def work():
            group = self.get_group(group_id)
            self._require_group_admin(group, admin_id)
            tournament_id = group.tournament_id
            self.session.delete(group)
            return tournament_id

        tournament_id = self.transactions.run(work)
        logger.info(f"Group {group_id} deleted by admin {admin_id}")
        publish(self.redis, membership_event(EventType.GROUP_DELETED, tournament_id, group_id, admin_id))

    # ==================== Membership ====================

    def join_group(self, code: str, user_id: int) -> PredictionGroup:
        """
        Join the group an invite code points at.

        Raises InvalidInviteCode, AlreadyMember or GroupFull. The seat claim
        and the membership insert commit together or not at all.
        """
        def work():
            group_id = self.invite_codes.resolve(code)
            if self.session.get(User, user_id) is None:
                raise NotFound("User not found")
            if self._membership(group_id, user_id) is not None:
                raise AlreadyMember()

            claimed = self.session.execute(
                db.update(PredictionGroup)
                .where(
                    PredictionGroup.id == group_id,
                    PredictionGroup.member_count < self.max_members
                )
                .values(member_count=PredictionGroup.member_count + 1)
                .execution_options(synchronize_session=False)
            ).rowcount
            if not claimed:
                raise GroupFull(f"Group has reached maximum capacity ({self.max_members} members)")

            try:
                self.session.add(GroupMember(group_id=group_id, user_id=user_id))
                self.session.flush()
            except IntegrityError:
                # A concurrent join by the same user won the unique constraint
                raise AlreadyMember()

            group = self.session.get(PredictionGroup, group_id)
            self.session.refresh(group)
            return group

        group = self.transactions.run(work)
        logger.info(f"User {user_id} joined group {group.id} ({group.member_count}/{self.max_members})")
        publish(self.redis, membership_event(EventType.MEMBER_JOINED, group.tournament_id, group.id, user_id))
        return group

    def _remove(self, group: PredictionGroup, user_id: int):
        membership = self._membership(group.id, user_id)
        if membership is None:
            raise NotMember()
        self.session.delete(membership)
        self.session.execute(
            db.update(PredictionGroup)
            .where(PredictionGroup.id == group.id)
            .values(member_count=PredictionGroup.member_count - 1)
            .execution_options(synchronize_session=False)
        )

    def leave_group(self, group_id: int, user_id: int):
        def work():
            group = self.get_group(group_id)
            if group.admin_id == user_id:
                raise InvalidState("The group admin cannot leave; delete the group instead")
            self._remove(group, user_id)
            return group.tournament_id

        tournament_id = self.transactions.run(work)
        logger.info(f"User {user_id} left group {group_id}")
        publish(self.redis, membership_event(EventType.MEMBER_LEFT, tournament_id, group_id, user_id))

    def remove_member(self, group_id: int, admin_id: int, target_user_id: int):
        def work():
            group = self.get_group(group_id)
            self._require_group_admin(group, admin_id)
            if target_user_id == admin_id:
                raise InvalidState("The group admin cannot remove themself")
            self._remove(group, target_user_id)
            return group.tournament_id

        tournament_id = self.transactions.run(work)
        logger.info(f"Admin {admin_id} removed user {target_user_id} from group {group_id}")
        publish(self.redis, membership_event(EventType.MEMBER_LEFT, tournament_id, group_id, target_user_id))

    # ==================== Invite codes ====================

    def get_invite_code(self, group_id: int, user_id: int) -> GroupInvite:
        """Current invite for a group; issued lazily for groups that have none."""
        group = self.get_group(group_id)
        self._require_group_admin(group, user_id)
        if group.invite is not None:
            return group.invite

        try:
            return self.transactions.run(
                lambda: self.invite_codes.generate(group_id),
                retry_on=(IntegrityError,)
            )
        except IntegrityError:
            raise Conflict("Could not generate a unique invite code")

    def rotate_invite_code(self, group_id: int, user_id: int) -> GroupInvite:
        def work():
            group = self.get_group(group_id)
            self._require_group_admin(group, user_id)
            return self.invite_codes.rotate(group_id)

        try:
            return self.transactions.run(work, retry_on=(IntegrityError,))
        except IntegrityError:
            raise Conflict("Could not generate a unique invite code")
