from enum import Enum
from flask import current_app, jsonify
from flask_login import LoginManager

from shared.errors import Forbidden
from .models import db, User

login_manager = LoginManager()


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


def has_role(actor, role: Role) -> bool:
    if actor is None or not getattr(actor, 'is_authenticated', False):
        return False
    try:
        return Role(actor.role) == role
    except ValueError:
        return False


def require_admin(actor):
    if not has_role(actor, Role.ADMIN):
        raise Forbidden("Admin role required")


@login_manager.request_loader
def load_user_from_request(req):
    """
    Identity comes from the upstream provider, which authenticates the
    request and forwards the user id in a trusted header.
    """
    header = current_app.config.get('IDENTITY_HEADER', 'X-User-Id')
    user_id = req.headers.get(header)
    if not user_id or not user_id.isdigit():
        return None
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'error': 'Authentication required', 'code': 'unauthenticated'}), 401
