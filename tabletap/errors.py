"""Error taxonomy for checkout and webhook reconciliation.

Every error carries the HTTP status it maps to. create_app() registers a
handler that renders them as {"error": message, "details": details}.
"""


class TableTapError(Exception):
    status_code = 500

    def __init__(self, message, details=None, status_code=None):
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ConfigurationError(TableTapError):
    """Missing tenant credential or environment secret. Not retried."""

    status_code = 500


class InvalidRequest(TableTapError):
    """Malformed or missing request field."""

    status_code = 400


class Unauthenticated(TableTapError):
    """Bad or missing bearer token."""

    status_code = 401


class Unauthorized(TableTapError):
    """Authenticated, but the request reaches into another tenant."""

    status_code = 403


class UpstreamProcessorError(TableTapError):
    """Stripe rejected or failed a call."""

    status_code = 500


class PersistenceError(TableTapError):
    """A database write failed."""

    status_code = 500


class SignatureInvalid(TableTapError):
    """Webhook authenticity check failed. Stripe will retry."""

    status_code = 400


class PartialReconciliationError(TableTapError):
    """Order materialization failed after the webhook was acknowledged.

    There is no caller to surface this to; it is logged and audited only.
    """
