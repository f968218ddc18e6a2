# ============================================================
# Booking API Router
# ------------------------------------------------------------
# Expose les endpoints REST des réservations : créneaux libres,
# création, consultation, annulation, validation du code d'accès
# et complétion. La logique métier vit dans allocator.py et
# lifecycle.py ; ici on ne fait que traduire HTTP <-> cœur.
# ============================================================
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

import allocator
import lifecycle
import stats
from access import COMPLETE_BOOKINGS, OVERRIDE_BOOKINGS, VIEW_ALL_BOOKINGS, Caller, get_caller, require
from database import get_session
from errors import Forbidden, NotFound
from models import AccessCodeCheck, BookingCreate, CancelRequest, Reservation, ReservationStatus, Role
from repository import MachineRepository, ReservationRepository, UserRepository
from timeutils import to_local, to_utc

router = APIRouter(prefix="/v1/bookings", tags=["bookings"])


# Réponse "human-friendly" : dates en heure locale. Le code d'accès
# n'est montré qu'au propriétaire.
def reservation_view(r: Reservation, caller: Optional[Caller] = None) -> dict:
    view = {
        "id": r.id,
        "machine_id": r.machine_id,
        "user_id": r.user_id,
        "hostel_id": r.hostel_id,
        "status": r.status,
        "start": to_local(r.start),
        "end": to_local(r.end),
        "duration": r.duration,
        "amount": r.amount,
        "created_at": to_local(r.created_at),
        "completed_at": to_local(r.completed_at),
        "cancelled_at": to_local(r.cancelled_at),
        "cancel_reason": r.cancel_reason,
    }
    if caller is not None and caller.user_id == r.user_id:
        view["access_code"] = r.access_code
    return view


def slot_view(slots) -> list:
    return [{"start": to_local(s.start), "end": to_local(s.end)} for s in slots]


# ------------------------------------------------------------
# GET /v1/bookings/available-slots : Créneaux libres d'un jour
# ------------------------------------------------------------
# Indicatif : la création revérifie sous verrou.
# ------------------------------------------------------------
@router.get("/available-slots")
def available_slots(machine_id: int, date: date, s: Session = Depends(get_session),
                    caller: Caller = Depends(get_caller)):
    return {
        "machine_id": machine_id,
        "date": date.isoformat(),
        "free": slot_view(allocator.available_slots(s, machine_id, date)),
        "busy": slot_view(allocator.busy_slots(s, machine_id, date)),
    }


@router.get("/check")
def check_availability(machine_id: int, start: datetime, duration: int, s: Session = Depends(get_session),
                       caller: Caller = Depends(get_caller)):
    return {"available": allocator.is_available(s, machine_id, to_utc(start), duration)}


# ------------------------------------------------------------
# POST /v1/bookings : Créer une réservation
# ------------------------------------------------------------
@router.post("", status_code=201)
def create_booking(body: BookingCreate, s: Session = Depends(get_session),
                   caller: Caller = Depends(get_caller)):
    # un étudiant ne réserve que dans son foyer
    if caller.role == Role.STUDENT:
        user = UserRepository(s).get(caller.user_id)
        machine = MachineRepository(s).get(body.machine_id)
        if user and machine and user.hostel_id != machine.hostel_id:
            raise Forbidden("students can only book machines of their own hostel")
    r = lifecycle.create_booking(s, caller.user_id, body.machine_id, body.start, body.duration)
    return reservation_view(r, caller)


@router.get("")
def my_bookings(s: Session = Depends(get_session), caller: Caller = Depends(get_caller)):
    return [reservation_view(r, caller) for r in ReservationRepository(s).for_user(caller.user_id)]


@router.get("/all")
def all_bookings(status: Optional[ReservationStatus] = None, machine_id: Optional[int] = None,
                 limit: int = 100, s: Session = Depends(get_session),
                 caller: Caller = Depends(require(VIEW_ALL_BOOKINGS))):
    rows = ReservationRepository(s).search(status=status.value if status else None,
                                           machine_id=machine_id, limit=min(limit, 500))
    return [reservation_view(r, caller) for r in rows]


@router.get("/stats")
def my_stats(s: Session = Depends(get_session), caller: Caller = Depends(get_caller)):
    result = stats.user_stats(s, caller.user_id)
    result["recent_bookings"] = [reservation_view(r, caller) for r in result["recent_bookings"]]
    return result


@router.get("/overview")
def overview(s: Session = Depends(get_session), caller: Caller = Depends(require(VIEW_ALL_BOOKINGS))):
    return stats.overview(s)


# ------------------------------------------------------------
# POST /v1/bookings/validate-code : Code saisi à la machine
# ------------------------------------------------------------
# Réservé au staff : retourne la réservation en cours, sinon 404.
# ------------------------------------------------------------
@router.post("/validate-code")
def validate_code(body: AccessCodeCheck, s: Session = Depends(get_session),
                  caller: Caller = Depends(require(COMPLETE_BOOKINGS))):
    r = lifecycle.validate_access_code(s, body.machine_id, body.code)
    return reservation_view(r, caller)


@router.get("/{booking_id}")
def get_booking(booking_id: int, s: Session = Depends(get_session), caller: Caller = Depends(get_caller)):
    r = ReservationRepository(s).get(booking_id)
    if not r:
        raise NotFound("booking not found")
    if r.user_id != caller.user_id and not caller.can(VIEW_ALL_BOOKINGS):
        # même réponse qu'une réservation inexistante
        raise NotFound("booking not found")
    return reservation_view(r, caller)


@router.post("/{booking_id}/cancel")
def cancel_booking(booking_id: int, body: Optional[CancelRequest] = None,
                   s: Session = Depends(get_session), caller: Caller = Depends(get_caller)):
    reason = body.reason if body else None
    r = lifecycle.cancel_booking(s, booking_id, caller.user_id,
                                 override=caller.can(OVERRIDE_BOOKINGS), reason=reason)
    return reservation_view(r, caller)


@router.post("/{booking_id}/complete")
def complete_booking(booking_id: int, s: Session = Depends(get_session),
                     caller: Caller = Depends(require(COMPLETE_BOOKINGS))):
    r = lifecycle.complete_booking(s, booking_id)
    return reservation_view(r, caller)
