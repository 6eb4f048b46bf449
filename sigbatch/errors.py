"""
Error taxonomy shared by the export and dispatch services.

Services raise these; routers translate them into HTTP responses.
"""


class SigBatchError(Exception):
    """Base class for service errors"""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class NotFound(SigBatchError):
    status_code = 404


class AccessDenied(SigBatchError):
    status_code = 403


class NotReady(SigBatchError):
    status_code = 409


class ValidationError(SigBatchError):
    status_code = 400


class InvalidIdentifier(ValidationError):
    pass


class InvalidRecipient(ValidationError):
    pass


class TemplateNotFound(ValidationError):
    pass


class TransientSendFailure(SigBatchError):
    status_code = 502


class SendRejected(SigBatchError):
    """The mail server or relay refused the message; retrying will not help"""
    status_code = 502


class StorageFailure(SigBatchError):
    status_code = 500


class ConcurrentUpdate(SigBatchError):
    """Raised by the job store when a compare-and-swap save loses a race"""
    status_code = 409
