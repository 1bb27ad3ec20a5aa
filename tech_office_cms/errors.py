"""
Error taxonomy shared by the store, the decision cache, the share client and
the HTTP layer. Each error knows the HTTP status it is reported with; the
Flask app turns any of them into a ``{"error": message}`` response.
"""


class OfficeError(Exception):
    """Base class for every error reported to API callers"""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'error': self.message}


class ValidationError(OfficeError):
    """A required field is missing or a value is malformed"""
    status_code = 400


class NotFoundError(OfficeError):
    """Unknown record id or decision identifier"""
    status_code = 404


class ConflictError(OfficeError):
    """Unique constraint violation or duplicate link"""
    status_code = 400


class UpstreamError(OfficeError):
    """Diavgeia unreachable, timed out or answered with a non-404 error"""
    status_code = 500


class StorageError(OfficeError):
    """A network share operation failed"""
    status_code = 500


class PathTraversalError(ValidationError):
    """A share-relative path tried to climb out of the share"""
