"""Exception types raised by the RAG core."""


class AnsarError(Exception):
    """Base class for errors raised by this package."""


class GenerationCancelledError(AnsarError):
    """Raised when a streamed generation is cancelled by its caller."""


class LLMUnavailableError(AnsarError):
    """Raised when no usable LLM credential is configured."""


class RateLimitQueueFullError(AnsarError):
    """Raised when too many calls are already waiting on a rate-limited key."""

    def __init__(self, service_key: str) -> None:
        """Initialize the error with the saturated service key."""
        super().__init__(f"Rate limit queue full for service: {service_key}")
        self.service_key = service_key
