"""Error kinds shared by the services and rendered by the API.

Every error carries a stable ``code`` so clients can branch on it (for
example "expired" vs "already_member") without parsing messages.
"""
from typing import Any, Dict, Optional


class DomainError(Exception):
    code = "error"
    http_status = 400
    default_message = "Request could not be completed"

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body = {"code": self.code, "message": self.message}
        if self.context:
            body["context"] = self.context
        return body


class NotFound(DomainError):
    code = "not_found"
    http_status = 404
    default_message = "Not found"


class MemberNotFound(NotFound):
    code = "member_not_found"
    default_message = "Member not found"


class Unauthenticated(DomainError):
    code = "unauthenticated"
    http_status = 401
    default_message = "Authentication required"


class Forbidden(DomainError):
    code = "forbidden"
    http_status = 403
    default_message = "Insufficient permissions for this action"


class WrongRecipient(Forbidden):
    code = "wrong_recipient"
    default_message = "This invitation was issued for a different email"


class Conflict(DomainError):
    code = "conflict"
    http_status = 409
    default_message = "Conflicting state"


class AlreadyMember(Conflict):
    code = "already_member"
    default_message = "User is already a member of this project"


class DuplicateInvitation(Conflict):
    code = "duplicate_invitation"
    default_message = "An active invitation for this email already exists"


class AlreadyUsed(Conflict):
    code = "already_used"
    default_message = "Invitation has already been used"


class CannotRemoveOwner(Conflict):
    code = "cannot_remove_owner"
    default_message = "The project owner cannot be removed"


class CannotModifyOwner(Conflict):
    code = "cannot_modify_owner"
    default_message = "The project owner's role cannot be changed"


class OwnerCannotLeave(Conflict):
    code = "owner_cannot_leave"
    default_message = "The owner cannot leave the project; delete it instead"


class Expired(DomainError):
    code = "expired"
    http_status = 410
    default_message = "Invitation has expired"


class ValidationError(DomainError):
    code = "validation_error"
    http_status = 422
    default_message = "Invalid input"


class Unavailable(DomainError):
    code = "unavailable"
    http_status = 503
    default_message = "Service temporarily unavailable"
