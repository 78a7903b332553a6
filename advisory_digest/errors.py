from __future__ import annotations


class DigestError(Exception):
    """Base class for failures raised by digest collaborators."""


class ConfigError(ValueError):
    pass


class FetchError(DigestError):
    """A feed could not be fetched or parsed after all retry attempts."""

    def __init__(
        self,
        feed_id: str,
        message: str,
        attempts: int,
        last_error: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.feed_id = feed_id
        self.attempts = attempts
        self.last_error = last_error


class EnrichmentError(DigestError):
    pass


class PublishError(DigestError):
    """The CMS rejected or failed to store the digest draft."""

    def __init__(self, target: str, message: str) -> None:
        super().__init__(message)
        self.target = target


class NotifyError(DigestError):
    def __init__(self, message: str, failed_targets: list[str] | None = None) -> None:
        super().__init__(message)
        self.failed_targets = failed_targets or []
