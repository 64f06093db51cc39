"""Custom exceptions for membank."""


class MembankError(Exception):
    """Base exception for all membank errors."""


class ConfigError(MembankError):
    """Configuration-related errors."""


class ValidationError(MembankError):
    """Malformed input rejected before any I/O (bad names, non-positive budgets)."""


class NotFoundError(MembankError):
    """Unknown project, file, summary or hierarchy."""


class UpstreamServiceError(MembankError):
    """A vector store or content service call failed or timed out.

    Recoverable: callers degrade scoring, skip a candidate or keep a stale
    summary instead of failing the whole operation.
    """

    def __init__(self, message: str, operation: str = "") -> None:
        super().__init__(message)
        self.operation = operation


class BudgetExceededError(MembankError):
    """The budget cannot hold even a minimum chunk and a non-empty result was required."""


class HierarchyIntegrityError(MembankError):
    """A summary tree violates its parent/child link invariants."""


class LLMError(MembankError):
    """LLM provider errors."""


class ProviderNotAvailableError(LLMError):
    """Raised when an LLM provider's SDK is not installed."""

    def __init__(self, provider: str, package: str):
        super().__init__(
            f"Provider '{provider}' requires the '{package}' package. "
            f"Install it with: pip install membank[{provider}]"
        )
