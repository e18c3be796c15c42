"""Typed errors raised by pipeline stages and collaborator adapters.

Every error carries the name of the stage that raised it so the
orchestrator can record ``stage`` + ``message`` pairs in the run log.
"""

from __future__ import annotations

from budget_newsletter.models import StageError


class NewsletterError(Exception):
    """Base class for every error the pipeline knows how to record."""

    kind = "Error"

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(message)
        self.stage = stage
        self.message = message

    def __str__(self) -> str:
        return f"[{self.stage}] {self.message}"

    def to_stage_error(self) -> StageError:
        return StageError(stage=self.stage, kind=self.kind, message=self.message)

    def to_dict(self) -> dict:
        return self.to_stage_error().to_dict()


class ConfigMissingError(NewsletterError):
    """A required setting or environment variable is absent."""

    kind = "ConfigMissing"


class AuthExpiredError(NewsletterError):
    """Provider credentials are missing or could not be refreshed.

    The user has to reconnect the budget account.
    """

    kind = "AuthExpired"


class ProviderUnavailableError(NewsletterError):
    """The budget provider timed out or answered with a server error."""

    kind = "ProviderUnavailable"


class IndexMissingError(NewsletterError):
    """A persistence query needs an index that does not exist yet."""

    kind = "IndexMissing"


class LLMUnavailableError(NewsletterError):
    """The LLM call failed for any reason."""

    kind = "LLMUnavailable"


class DeliveryFailedError(NewsletterError):
    """Sending to one recipient failed."""

    kind = "DeliveryFailed"

    def __init__(self, stage: str, message: str, recipient: str = "") -> None:
        super().__init__(stage, message)
        self.recipient = recipient


class PersistenceFailedError(NewsletterError):
    """Writing a snapshot or run log failed."""

    kind = "PersistenceFailed"


class InputMalformedError(NewsletterError):
    """The provider payload is missing a required field."""

    kind = "InputMalformed"


class UnauthorizedError(NewsletterError):
    """A trigger request did not present the expected bearer secret."""

    kind = "Unauthorized"
