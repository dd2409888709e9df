class FinanceError(Exception):
    """Base for failures a request handler can turn into an HTTP response."""

    status_code = 500

    def __init__(self, message, field=None):
        super().__init__(message)
        self.message = message
        self.field = field


class ValidationError(FinanceError):
    status_code = 400


class NotFoundError(FinanceError):
    status_code = 404


class ForbiddenError(FinanceError):
    status_code = 403


class UpstreamError(FinanceError):
    """The store or the notifier failed; detail is logged, not returned."""

    status_code = 500
