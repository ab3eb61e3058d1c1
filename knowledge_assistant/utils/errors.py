"""Custom exception hierarchy for the knowledge assistant.

All application exceptions inherit from :class:`KnowledgeAssistantError`,
which carries an optional ``provider_name`` so error handlers can identify
which collaborator (e.g. "openai_embedding", "postgres", "pdf_parser")
caused the failure.

The hierarchy is organized by pipeline stage:

    KnowledgeAssistantError  (base -- catch-all)
    +-- ValidationError              (bad input or configuration)
    +-- ConfigurationError           (startup / missing providers)
    +-- SourceStateError             (illegal source status transition)
    +-- ConversationNotFoundError    (unknown conversation identifier)
    +-- ParsingError                 (document parsing failure)
    +-- EmbeddingError               (embedding provider failure)
    |   +-- InvalidEmbeddingResponseError
    +-- RetrievalError               (vector store / persistence failure)
    +-- LLMError                     (generation call failure)
    +-- ProviderUnavailableError     (external service unreachable)

Validation and not-found errors are raised before any side effect; provider
errors are wrapped with ``raise ... from exc`` at the adapter boundary and
re-raised unchanged by the pipelines.
"""


class KnowledgeAssistantError(Exception):
    """Base exception for all knowledge assistant errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name``.  ``__str__`` prefixes the provider name in brackets
    for structured log output, e.g. ``[openai_embedding] Rate limit``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Input / state errors
# ---------------------------------------------------------------------------

class ValidationError(KnowledgeAssistantError):
    """Raised when caller input or component configuration is invalid."""

    def __init__(
        self,
        message: str = "Invalid input",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(KnowledgeAssistantError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class SourceStateError(KnowledgeAssistantError):
    """Raised on an illegal knowledge-source status transition.

    Covers mutations of a DELETED source and completing a source that is
    not currently PROCESSING.
    """

    def __init__(
        self,
        message: str = "Invalid source state transition",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConversationNotFoundError(KnowledgeAssistantError):
    """Raised when an explicit conversation identifier does not resolve."""

    def __init__(
        self,
        message: str = "Conversation not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Pipeline stage errors
# ---------------------------------------------------------------------------

class ParsingError(KnowledgeAssistantError):
    """Raised when a document buffer cannot be converted to text."""

    def __init__(
        self,
        message: str = "Document parsing failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmbeddingError(KnowledgeAssistantError):
    """Raised when embedding generation fails."""

    def __init__(
        self,
        message: str = "Failed to generate embedding",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class InvalidEmbeddingResponseError(EmbeddingError):
    """Raised when the embedding provider returns a malformed payload.

    Distinct from :class:`EmbeddingError` so callers can tell a provider
    outage apart from a contract violation.
    """

    def __init__(
        self,
        message: str = "Invalid embedding response format",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RetrievalError(KnowledgeAssistantError):
    """Raised when a vector-store or persistence operation fails."""

    def __init__(
        self,
        message: str = "Knowledge store operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class LLMError(KnowledgeAssistantError):
    """Raised when an LLM API call fails or returns an unusable response."""

    def __init__(
        self,
        message: str = "LLM API call failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ProviderUnavailableError(KnowledgeAssistantError):
    """Raised when an external service or provider is unreachable.

    The provider factories catch this to try the next provider in the
    configured priority order.
    """

    def __init__(
        self,
        message: str = "External service is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
