"""
Error taxonomy for the prediction platform.

Every failure the core surfaces is a PredictorError subclass carrying a
stable ``code`` (the message category the presentation layer renders) and
the HTTP status the API maps it to.
"""
from typing import Optional


class PredictorError(Exception):
    code = "error"
    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None, **details):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFound(PredictorError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class Conflict(PredictorError):
    code = "conflict"
    status_code = 409
    default_message = "Already exists"


class Forbidden(PredictorError):
    code = "forbidden"
    status_code = 403
    default_message = "You are not allowed to do that"


class CapacityExceeded(PredictorError):
    code = "capacity_exceeded"
    status_code = 409
    default_message = "Capacity exceeded"


class InvalidState(PredictorError):
    code = "invalid_state"
    status_code = 409
    default_message = "Not allowed in the current state"


class ValidationError(PredictorError):
    code = "validation_error"
    status_code = 400
    default_message = "Invalid input"


class AlreadyMember(Conflict):
    code = "already_member"
    default_message = "You are already a member of this group"


class NotMember(NotFound):
    code = "not_member"
    default_message = "User is not a member of this group"


class GroupFull(CapacityExceeded):
    code = "group_full"
    default_message = "Group has reached maximum capacity"


class InvalidInviteCode(NotFound):
    code = "invalid_invite_code"
    default_message = "Invalid invite code"


class MatchLocked(InvalidState):
    code = "match_locked"
    default_message = "Predictions are closed for this match"


class ScoringBusy(Conflict):
    code = "scoring_busy"
    default_message = "Scores for this tournament are being updated, try again shortly"
