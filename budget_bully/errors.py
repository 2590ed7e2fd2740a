"""Error kinds raised across the sync pipeline."""


class BudgetBullyError(Exception):
    """Base class for every error the pipeline raises on purpose."""


class NotFoundError(BudgetBullyError):
    """A linked item, its access token, or a user could not be found."""


class UpstreamError(BudgetBullyError):
    """A request to the aggregation provider failed."""

    def __init__(self, message: str, error_code: str = "", status_code: int | None = None):
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code


class PersistenceError(BudgetBullyError):
    """A read or write against the store failed."""


class ValidationError(BudgetBullyError):
    """Input was malformed, e.g. a webhook without the item it refers to."""
