import re
import secrets
import string

INVITE_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_invite_code(length: int = 10) -> str:
    """Generate an invite code like 'Q7RZ04KXMB': independent uniform draws from [A-Z0-9]."""
    return ''.join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(length))


def normalize_invite_code(code: str) -> str:
    """Invite codes are matched case-insensitively; stored codes are upper case."""
    return (code or '').strip().upper()


def slugify(name: str) -> str:
    """Turn a tournament name into a URL slug like 'world-cup-2026'."""
    slug = re.sub(r'[^a-z0-9]+', '-', name.lower()).strip('-')
    return slug or 'tournament'
