# ============================================================
# allocator.py : Allocation des créneaux
# ------------------------------------------------------------
# Répond à deux questions pour une machine :
#   - quels intervalles sont libres le jour D ? (available_slots)
#   - l'intervalle [s, s+d) est-il libre ?     (is_available)
# Lecture seule : aucun verrou ici. available_slots est indicatif,
# c'est lifecycle.create_booking qui tranche sous verrou.
# Toutes les dates manipulées sont en UTC (avec tzinfo).
# ============================================================
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple

from sqlmodel import Session

import config
from errors import InvalidRequest, MachineUnavailable, NotFound, OutOfWindow
from models import Machine, MachineStatus, Reservation, Slot
from repository import MachineRepository, ReservationRepository
from timeutils import local_day, local_time_to_utc

Interval = Tuple[datetime, datetime]


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    # intervalles semi-ouverts [start, end)
    return a_start < b_end and b_start < a_end


def operating_window(machine: Machine, day: date) -> Interval:
    return local_time_to_utc(day, machine.opens_at), local_time_to_utc(day, machine.closes_at)


def merge(intervals: List[Interval]) -> List[Interval]:
    """Union d'intervalles triés ; les intervalles contigus sont fusionnés."""
    merged: List[Interval] = []
    for start, end in sorted(intervals):
        if merged and start <= merged[-1][1]:
            if end > merged[-1][1]:
                merged[-1] = (merged[-1][0], end)
        else:
            merged.append((start, end))
    return merged


def complement(window: Interval, busy: List[Interval]) -> List[Interval]:
    """Trous de `window` non couverts par `busy` (déjà fusionné et borné)."""
    free = []
    cursor, window_end = window
    for start, end in busy:
        if start > cursor:
            free.append((cursor, start))
        cursor = max(cursor, end)
    if cursor < window_end:
        free.append((cursor, window_end))
    return free


def _busy_in_window(session: Session, machine: Machine, window: Interval) -> List[Interval]:
    w_start, w_end = window
    reservations = ReservationRepository(session).overlapping(machine.id, w_start, w_end)
    clipped = [(max(r.start, w_start), min(r.end, w_end)) for r in reservations]
    return merge(clipped)


def _get_machine(session: Session, machine_id: int) -> Machine:
    machine = MachineRepository(session).get(machine_id)
    if not machine:
        raise NotFound("machine not found")
    return machine


def busy_slots(session: Session, machine_id: int, day: date) -> List[Slot]:
    machine = _get_machine(session, machine_id)
    window = operating_window(machine, day)
    return [Slot(start=s, end=e) for s, e in _busy_in_window(session, machine, window)]


def available_slots(session: Session, machine_id: int, day: date) -> List[Slot]:
    machine = _get_machine(session, machine_id)
    window = operating_window(machine, day)
    busy = _busy_in_window(session, machine, window)
    return [Slot(start=s, end=e) for s, e in complement(window, busy)]


def find_conflict(session: Session, machine_id: int, start: datetime, end: datetime) -> Optional[Reservation]:
    existing = ReservationRepository(session).overlapping(machine_id, start, end)
    return existing[0] if existing else None


def is_available(session: Session, machine_id: int, start: datetime, duration: int) -> bool:
    if duration <= 0:
        raise InvalidRequest("duration must be positive")
    end = Reservation.end_of(start, duration)
    return find_conflict(session, machine_id, start, end) is None


# ------------------------------------------------------------
# Validation d'une demande avant toute recherche de conflit
# ------------------------------------------------------------
# - durée > 0 et <= MAX_BOOKING_MINUTES     -> InvalidRequest
# - machine au statut "available"           -> MachineUnavailable
# - [start, end) inclus dans la fenêtre du
#   jour local de start                     -> OutOfWindow
# Retourne la fin de l'intervalle.
# ------------------------------------------------------------
def check_request(machine: Machine, start: datetime, duration: int) -> datetime:
    if duration is None or duration <= 0:
        raise InvalidRequest("duration must be positive")
    if duration > config.MAX_BOOKING_MINUTES:
        raise InvalidRequest(f"duration must not exceed {config.MAX_BOOKING_MINUTES} minutes")
    if machine.status != MachineStatus.AVAILABLE:
        raise MachineUnavailable(f"machine is {machine.status}")

    end = start + timedelta(minutes=duration)
    w_start, w_end = operating_window(machine, local_day(start))
    if start < w_start or end > w_end:
        raise OutOfWindow(
            f"machine accepts bookings between {machine.opens_at:%H:%M} and {machine.closes_at:%H:%M}"
        )
    return end
