from __future__ import annotations


class DomainError(Exception):
    """Base class for recoverable lifecycle errors surfaced to callers."""

    status_code = 400
    default_title = "Domain Error"

    def __init__(
        self,
        detail: str,
        *,
        title: str | None = None,
        errors: list[dict[str, str]] | None = None,
        type: str | None = None,
    ) -> None:
        super().__init__(detail)
        self.detail = detail
        self.title = title or self.default_title
        self.errors = errors or []
        self.type = type


class ValidationError(DomainError):
    status_code = 422
    default_title = "Validation Error"


class NotFoundError(DomainError):
    status_code = 404
    default_title = "Not Found"


class ConflictError(DomainError):
    status_code = 409
    default_title = "Conflict"


class UnauthorizedError(DomainError):
    status_code = 403
    default_title = "Forbidden"


class ProviderUnavailableError(ConflictError):
    default_title = "Provider Unavailable"


class SlotTakenError(ConflictError):
    default_title = "Slot Taken"


class RateNotConfiguredError(ConflictError):
    default_title = "Rate Not Configured"


class CancellationWindowError(ConflictError):
    default_title = "Cancellation Window Closed"


class EscrowAlreadyHeldError(ConflictError):
    default_title = "Escrow Already Held"


class EscrowAlreadySettledError(ConflictError):
    default_title = "Escrow Already Settled"


class EscrowHoldNotFoundError(DomainError):
    """No hold exists for the booking: the client never paid."""

    status_code = 409
    default_title = "Escrow Hold Missing"
