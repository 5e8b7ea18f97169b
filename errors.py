class FinanceError(Exception):
    """Base class for errors surfaced to API callers."""


class ValidationError(FinanceError, ValueError):
    pass


class NotFoundError(FinanceError, LookupError):
    pass


class AuthenticationError(FinanceError):
    pass


class PersistenceError(FinanceError, RuntimeError):
    pass
