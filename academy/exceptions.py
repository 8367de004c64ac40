"""Error taxonomy shared by the ledger, reconciliation and the HTTP layer.

Every error carries the HTTP status the views answer with.
"""


class LedgerError(Exception):
    status_code = 400
    default_message = 'Request failed'

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ValidationFailed(LedgerError, ValueError):
    status_code = 400
    default_message = 'Invalid input'


class AuthenticationFailed(LedgerError):
    status_code = 401
    default_message = 'Unauthorized'


class PermissionDenied(LedgerError):
    status_code = 403
    default_message = 'Forbidden'


class NotFound(LedgerError):
    status_code = 404
    default_message = 'Not found'


class NotEnrolled(LedgerError):
    status_code = 403
    default_message = 'Not enrolled in this course'


class ContentLocked(LedgerError):
    status_code = 403
    default_message = 'This section has not been unlocked'


class ConflictError(LedgerError):
    status_code = 409
    default_message = 'Conflict'


class AlreadyEnrolled(ConflictError):
    default_message = 'Already enrolled in this course'


class AlreadyPurchased(ConflictError):
    default_message = 'Section already purchased'


class CourseIsPaid(ConflictError):
    default_message = 'This is a paid course'


class ContradictoryOutcome(ConflictError):
    default_message = 'Payment outcome contradicts the recorded terminal state'


class ExternalServiceError(LedgerError):
    status_code = 503
    default_message = 'Service temporarily unavailable'


class GatewayUnavailable(ExternalServiceError):
    default_message = 'Payment gateway unavailable'


class ObjectStoreUnavailable(ExternalServiceError):
    default_message = 'File storage unavailable'
