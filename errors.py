from typing import Optional


class ExpenseTrackerError(Exception):
    status_code = 500
    public_message: Optional[str] = None

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def client_message(self) -> str:
        return self.public_message or self.message


class ValidationError(ExpenseTrackerError, ValueError):
    status_code = 400


class DuplicateError(ExpenseTrackerError, ValueError):
    status_code = 400


class NotFoundOrUnauthorized(ExpenseTrackerError, LookupError):
    """Missing and foreign-owned records are reported identically."""

    status_code = 404


class AuthError(ExpenseTrackerError):
    status_code = 401


class PartialPropagationError(ExpenseTrackerError):
    """A compound write committed its first step but not its second.

    The caller may retry only the propagation step for ``category_id``.
    """

    status_code = 409

    def __init__(
        self, message: str, *, category_id: int, old_name: str, new_name: str
    ) -> None:
        super().__init__(message)
        self.category_id = category_id
        self.old_name = old_name
        self.new_name = new_name


class UnexpectedError(ExpenseTrackerError):
    status_code = 500
    public_message = "Something went wrong"


class OperationTimeout(UnexpectedError):
    status_code = 503
    public_message = "Request timed out before any change was made"
