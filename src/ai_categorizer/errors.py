class CategorizerError(Exception):
    """Base exception for categorization errors."""

    pass


class ValidationError(CategorizerError):
    """Raised when a transaction cannot be categorized as submitted."""

    pass


class PersistenceError(CategorizerError):
    """Raised when the rule store or feedback ledger is unavailable."""

    pass


class ProviderError(CategorizerError):
    """Base exception for failures of a single AI provider attempt."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"[{provider}] {message}")
        self.provider = provider


class ProviderTimeoutError(ProviderError):
    """Raised when a provider does not answer within its timeout."""

    pass


class ProviderResponseError(ProviderError):
    """Raised when a provider answer is empty, truncated or not the expected JSON."""

    pass


class ProviderUnavailableError(ProviderError):
    """Raised when a provider rejects the request or cannot be reached."""

    pass
