# ============================================================
# errors.py : Erreurs métier du service
# ------------------------------------------------------------
# Toutes les erreurs sont attendues et récupérables par l'appelant.
# Chaque classe porte son "kind" et son code HTTP ; un seul
# handler FastAPI (register_handlers) les convertit en réponse JSON
# {"error": kind, "detail": message}.
# ============================================================
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class BookingError(Exception):
    kind = "BookingError"
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind


class InvalidRequest(BookingError):
    kind = "InvalidRequest"
    status_code = 400


class OutOfWindow(BookingError):
    kind = "OutOfWindow"
    status_code = 422


class MachineUnavailable(BookingError):
    kind = "MachineUnavailable"
    status_code = 409


class Conflict(BookingError):
    """Chevauchement : porte l'id de la réservation gagnante."""

    kind = "Conflict"
    status_code = 409

    def __init__(self, message: str = "", reservation_id=None):
        super().__init__(message)
        self.reservation_id = reservation_id


class InsufficientFunds(BookingError):
    kind = "InsufficientFunds"
    status_code = 402


class InvalidTransition(BookingError):
    kind = "InvalidTransition"
    status_code = 409


class Forbidden(BookingError):
    kind = "Forbidden"
    status_code = 403


class NotFound(BookingError):
    kind = "NotFound"
    status_code = 404


# Échec de la couche de persistance : rien n'a été validé,
# l'appelant peut réessayer une fois.
class StorageError(BookingError):
    kind = "StorageError"
    status_code = 503


def booking_error_handler(request: Request, exc: BookingError):
    body = {"error": exc.kind, "detail": exc.message}
    if isinstance(exc, Conflict) and exc.reservation_id is not None:
        body["reservation_id"] = exc.reservation_id
    if exc.status_code >= 500:
        logger.warning("[http] %s %s -> %s: %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=exc.status_code, content=body)


def register_handlers(app: FastAPI):
    app.add_exception_handler(BookingError, booking_error_handler)
