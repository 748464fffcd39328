"""Error taxonomy shared by the services and the HTTP layer.

Services raise these; ``storefront.main`` renders them as ``{"error": message}``
with the matching status code. Messages are user-safe and localized; internal
detail goes to the logs only.
"""

from __future__ import annotations


class StorefrontError(Exception):
    status_code = 500
    default_message = "Si è verificato un errore. Riprova più tardi."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(StorefrontError):
    status_code = 400
    default_message = "Richiesta non valida"


class InvalidTransitionError(ValidationError):
    default_message = "Cambio di stato non consentito"

    def __init__(self, current: str, requested: str, message: str | None = None) -> None:
        self.current = current
        self.requested = requested
        super().__init__(message)


class UnauthenticatedError(StorefrontError):
    status_code = 401
    default_message = "Autenticazione richiesta"


class ForbiddenError(StorefrontError):
    status_code = 403
    default_message = "Accesso negato"


class NotFoundError(StorefrontError):
    status_code = 404
    default_message = "Risorsa non trovata"


class ConflictError(StorefrontError):
    status_code = 409
    default_message = "L'ordine è stato modificato da un'altra richiesta. Ricarica e riprova."


class RateLimitExceeded(StorefrontError):
    status_code = 429
    default_message = "Troppe richieste. Riprova tra qualche minuto."

    def __init__(self, *, limit: int, reset_at: int, remaining: int = 0, message: str | None = None) -> None:
        self.limit = limit
        self.remaining = remaining
        self.reset_at = reset_at
        super().__init__(message)


class UpstreamError(StorefrontError):
    status_code = 500
