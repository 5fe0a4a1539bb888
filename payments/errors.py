class ReconciliationError(Exception):
    """Base for failures that end a reconciliation request with an HTTP error."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: str = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def as_dict(self) -> dict:
        body = {"success": False, "error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class Unauthorized(ReconciliationError):
    status_code = 401
    code = "UNAUTHORIZED"


class BadRequest(ReconciliationError):
    status_code = 400
    code = "BAD_REQUEST"


class OrderNotFound(ReconciliationError):
    status_code = 404
    code = "ORDER_NOT_FOUND"


class InvalidSignature(ReconciliationError):
    status_code = 401
    code = "INVALID_SIGNATURE"


class UpstreamFailure(ReconciliationError):
    code = "UPSTREAM_FAILURE"


class PersistenceFailure(ReconciliationError):
    code = "PERSISTENCE_FAILURE"
