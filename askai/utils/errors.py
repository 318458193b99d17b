"""Exception hierarchy for askai."""


class AskError(Exception):
    """Base exception for all askai errors."""

    exit_code = 1

    def __init__(self, message: str, exit_code: int | None = None, hint: str | None = None):
        """
        Initialize exception with optional exit code and hint.

        Args:
            message: Error message
            exit_code: Override default exit code
            hint: Helpful hint for resolving the error (uses Python 3.11+ __notes__)
        """
        super().__init__(message)
        if exit_code:
            self.exit_code = exit_code
        if hint:
            if hasattr(self, "add_note"):
                self.add_note(hint)


class ResourceError(AskError):
    """External resources unavailable (API, network, files)."""

    exit_code = 75


class ConfigError(AskError):
    """Configuration-related errors (.env, config.yaml, missing keys)."""

    exit_code = 78


class ProviderError(ResourceError):
    """Provider API errors (network, auth, rate limit)."""

    def __init__(self, message: str, status_code: int | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code


class NoApiKeyError(ConfigError):
    """No API key configured for the selected provider."""

    def __init__(self, provider: str):
        super().__init__(
            f"No API key found for {provider}",
            hint=f"Add keys under providers.{provider}.api_keys in config.yaml "
            f"or set the provider's api_key_env variable",
        )
        self.provider = provider


class AbortError(AskError):
    """The current turn was cancelled.

    Kept outside the ResourceError branch so callers can tell an interruption
    apart from a failed request.
    """

    exit_code = 130

    def __init__(self, message: str = "Aborted", reason: object = None):
        super().__init__(message)
        self.reason = reason
