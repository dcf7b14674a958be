import logging

from sqlalchemy.exc import IntegrityError

from shared.errors import Conflict, NotFound, ValidationError
from .auth import Role
from .models import db, User
from .transaction import TransactionRunner

logger = logging.getLogger(__name__)

# Profile fields a user may change about themself; role and email are not among them
PROFILE_FIELDS = ('name', 'image', 'country', 'country_flag')


class AccountService:
    """Local user records. Sign-up and sessions belong to the identity provider."""

    def __init__(self, session=None, transactions: TransactionRunner = None):
        self.session = session or db.session
        self.transactions = transactions or TransactionRunner(self.session)

    def get_user(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    def create_user(self, name: str, email: str, role: Role = Role.USER, **profile) -> User:
        if not name or not email or '@' not in email:
            raise ValidationError("A name and a valid email are required")

        def work():
            user = User(name=name, email=email.strip().lower(), role=Role(role).value)
            for field in PROFILE_FIELDS:
                if field in profile:
                    setattr(user, field, profile[field])
            self.session.add(user)
            self.session.flush()
            return user

        try:
            user = self.transactions.run(work)
        except IntegrityError:
            raise Conflict("Email is already registered")

        logger.info(f"Created {user.role} user {user.id}")
        return user

    def update_profile(self, user_id: int, updates: dict) -> User:
        unknown = set(updates) - set(PROFILE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        for field, value in updates.items():
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"'{field}' must be a string")
        if 'name' in updates and not updates['name']:
            raise ValidationError("Name cannot be empty")

        def work():
            user = self.get_user(user_id)
            for field, value in updates.items():
                setattr(user, field, value)
            return user

        return self.transactions.run(work)
