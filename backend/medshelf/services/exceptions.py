"""Domain exceptions for family membership operations.

Every failure mode has its own class and a stable ``code`` so API clients can
tell them apart without parsing messages. ``status_code`` is the HTTP status
the API layer answers with.
"""

from uuid import UUID


class FamilyServiceError(Exception):
    """Base exception for family service errors."""

    code = "family_error"
    status_code = 400
    default_detail = "Family operation failed."

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class NotAuthenticatedError(FamilyServiceError):
    code = "not_authenticated"
    status_code = 401
    default_detail = "Not authenticated"


class FamilyValidationError(FamilyServiceError):
    """Empty or malformed input (name, code format, password length)."""

    code = "validation_error"
    status_code = 422
    default_detail = "Invalid input."


class PasswordTooShortError(FamilyValidationError):
    code = "password_too_short"

    def __init__(self, min_length: int):
        self.min_length = min_length
        super().__init__(f"Password must be at least {min_length} characters.")


class PasswordTooLongError(FamilyValidationError):
    """bcrypt only reads the first 72 bytes, so longer passwords are refused."""

    code = "password_too_long"

    def __init__(self, max_bytes: int):
        self.max_bytes = max_bytes
        super().__init__(f"Password must be at most {max_bytes} bytes.")


class FamilyNotFoundError(FamilyServiceError):
    code = "family_not_found"
    status_code = 404
    default_detail = "Family not found"


class AlreadyMemberError(FamilyServiceError):
    code = "already_member"
    status_code = 409
    default_detail = "You are already a member of this family."


class AlreadyInFamilyError(FamilyServiceError):
    code = "already_in_family"
    status_code = 409
    default_detail = "You are already in a family. Leave your current family first."


class PasswordRequiredError(FamilyServiceError):
    code = "password_required"
    status_code = 403
    default_detail = "This family is password protected."


class InvalidPasswordError(FamilyServiceError):
    code = "invalid_password"
    status_code = 403
    default_detail = "Incorrect family password."


class ForbiddenError(FamilyServiceError):
    code = "forbidden"
    status_code = 403
    default_detail = "Admin access required"


class CannotRemoveFounderError(FamilyServiceError):
    code = "cannot_remove_founder"
    status_code = 409
    default_detail = "Family creator cannot be removed."


class FounderCannotLeaveError(FamilyServiceError):
    code = "founder_cannot_leave"
    status_code = 409
    default_detail = "Family creator cannot leave. Transfer ownership first."


class MemberNotFoundError(FamilyServiceError):
    code = "member_not_found"
    status_code = 404
    default_detail = "Member not found in your family"


class PartialCreateFailureError(FamilyServiceError):
    """The family record was written but linking the creator to it failed."""

    code = "partial_create_failure"
    status_code = 500

    def __init__(self, family_id: UUID, detail: str | None = None):
        self.family_id = family_id
        super().__init__(
            detail or f"Family {family_id} was created but could not be linked to your account."
        )


class CodeSpaceExhaustedError(FamilyServiceError):
    code = "code_space_exhausted"
    status_code = 503

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Could not generate a unique family code after {attempts} attempts.")


class FamilyIntegrityError(FamilyServiceError):
    """Stored data breaks a uniqueness rule (e.g. two families share a code)."""

    code = "data_integrity_error"
    status_code = 500
    default_detail = "Family data is inconsistent."
