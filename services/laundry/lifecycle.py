# ============================================================
# lifecycle.py : Cycle de vie d'une réservation
# ------------------------------------------------------------
#   create  : → CONFIRMED (débit du portefeuille, code d'accès)
#   validate_access_code : recherche de la réservation en cours
#   complete : CONFIRMED → COMPLETED (pas de remboursement)
#   cancel   : CONFIRMED → CANCELLED avant le début (remboursement)
# COMPLETED et CANCELLED sont terminaux.
# Le cœur ne connaît pas les rôles : l'appelant passe des ids et,
# pour l'annulation, un booléen `override` déjà vérifié.
# ============================================================
import logging
import secrets
import string
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

import allocator
import config
import wallet
from errors import (BookingError, Conflict, Forbidden, InvalidRequest, InvalidTransition,
                    NotFound, StorageError)
from locks import machine_lock, user_lock
from models import Machine, Reservation, ReservationStatus
from publisher import publish_event
from repository import MachineRepository, ReservationRepository
from timeutils import to_local, to_utc, utcnow

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_letters + string.digits
CODE_ATTEMPTS = 20


def gen_code(n: Optional[int] = None) -> str:
    n = n or config.ACCESS_CODE_LENGTH
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(n))


def issue_access_code(session: Session, machine_id: int) -> str:
    """Code aléatoire, différent des codes CONFIRMED de la même machine."""
    taken = ReservationRepository(session).confirmed_codes(machine_id)
    for _ in range(CODE_ATTEMPTS):
        code = gen_code()
        if code not in taken:
            return code
    # 62^6 combinaisons : n'arrive qu'avec un alphabet dégénéré
    raise StorageError("could not issue a unique access code")


def booking_amount(machine: Machine, duration: int) -> float:
    return round(duration / machine.cycle_minutes * machine.cost_per_cycle, 2)


def commit_or_raise(session: Session, what: str):
    try:
        session.commit()
    except SQLAlchemyError as err:
        session.rollback()
        logger.error("[booking] %s failed: %s", what, err)
        raise StorageError(f"{what} could not be saved, nothing was committed") from err


def _event_payload(r: Reservation) -> dict:
    return {
        "bookingId": r.id,
        "userId": r.user_id,
        "machineId": r.machine_id,
        "start": to_local(r.start),
        "end": to_local(r.end),
        "amount": r.amount,
        "status": r.status,
    }


# ------------------------------------------------------------
# create_booking : Créer une réservation
# ------------------------------------------------------------
# Sous les verrous machine + utilisateur, en une seule transaction :
#   1) machine (FOR UPDATE) + validation de la demande
#   2) recherche de chevauchement -> Conflict
#   3) insertion, débit du portefeuille (FOR UPDATE), commit
# Toute erreur annule l'ensemble : pas de débit sans réservation.
# ------------------------------------------------------------
def create_booking(session: Session, user_id: int, machine_id: int, start: datetime,
                   duration: int, now: Optional[datetime] = None) -> Reservation:
    if duration is None or duration <= 0:
        raise InvalidRequest("duration must be positive")
    start = to_utc(start)
    now = to_utc(now) if now else utcnow()

    with machine_lock(machine_id), user_lock(user_id):
        try:
            machine = MachineRepository(session).get(machine_id, for_update=True)
            if not machine:
                raise NotFound("machine not found")
            end = allocator.check_request(machine, start, duration)
            if start < now:
                raise InvalidRequest("cannot book a slot in the past")

            conflict = allocator.find_conflict(session, machine_id, start, end)
            if conflict:
                raise Conflict(f"slot overlaps reservation {conflict.id}", reservation_id=conflict.id)

            r = Reservation(
                machine_id=machine.id,
                user_id=user_id,
                hostel_id=machine.hostel_id,
                start=start,
                duration=duration,
                end=end,
                amount=booking_amount(machine, duration),
                status=ReservationStatus.CONFIRMED.value,
                access_code=issue_access_code(session, machine.id),
                created_at=now,
            )
            session.add(r)
            session.flush()
            wallet.debit(session, user_id, r.amount, "booking", reservation_id=r.id)
        except BookingError:
            session.rollback()
            raise
        except SQLAlchemyError as err:
            session.rollback()
            raise StorageError("booking could not be saved, nothing was committed") from err
        commit_or_raise(session, "booking")
        session.refresh(r)

    logger.info("[booking] created id=%s machine=%s user=%s %s+%smin", r.id, machine_id, user_id, r.start, duration)
    publish_event("BookingCreated", _event_payload(r))
    return r


# ------------------------------------------------------------
# validate_access_code : Code saisi à la machine
# ------------------------------------------------------------
# Réservation CONFIRMED de la machine, en cours (start <= now < end),
# code identique (sensible à la casse). Un seul message d'erreur :
# on ne dit pas si c'est le code ou l'horaire qui ne va pas.
# ------------------------------------------------------------
def validate_access_code(session: Session, machine_id: int, code: str,
                         now: Optional[datetime] = None) -> Reservation:
    now = to_utc(now) if now else utcnow()
    r = ReservationRepository(session).find_by_code(machine_id, code or "", now)
    if not r or not secrets.compare_digest(r.access_code, code):
        logger.info("[booking] access code rejected on machine=%s", machine_id)
        raise NotFound("no active booking matches this code")
    return r


def _machine_of(session: Session, reservation_id: int) -> int:
    r = ReservationRepository(session).get(reservation_id)
    if not r:
        raise NotFound("booking not found")
    return r.machine_id


# ------------------------------------------------------------
# complete / cancel : transitions depuis CONFIRMED
# ------------------------------------------------------------
# Prises sous le verrou de la machine, comme la création et le
# passage en maintenance. La ligne est relue sous ce verrou
# (FOR UPDATE + populate_existing) : une transition concurrente
# déjà validée est vue et la seconde échoue en InvalidTransition.
# Au plus un remboursement par réservation.
# ------------------------------------------------------------
def complete_booking(session: Session, reservation_id: int, now: Optional[datetime] = None) -> Reservation:
    now = to_utc(now) if now else utcnow()
    with machine_lock(_machine_of(session, reservation_id)):
        r = ReservationRepository(session).get(reservation_id, for_update=True)
        if r.status != ReservationStatus.CONFIRMED:
            session.rollback()
            raise InvalidTransition(f"booking is {r.status}")
        r.status = ReservationStatus.COMPLETED.value
        r.completed_at = now
        session.add(r)
        commit_or_raise(session, "completion")
        session.refresh(r)
    logger.info("[booking] completed id=%s", r.id)
    publish_event("BookingCompleted", _event_payload(r))
    return r


# Annulation avec remboursement intégral :
# propriétaire uniquement (sauf override staff/admin), statut
# CONFIRMED et now < start. Statut et remboursement sont validés
# dans le même commit.
def cancel_booking(session: Session, reservation_id: int, requesting_user_id: int,
                   override: bool = False, reason: Optional[str] = None,
                   now: Optional[datetime] = None) -> Reservation:
    now = to_utc(now) if now else utcnow()
    with machine_lock(_machine_of(session, reservation_id)):
        r = ReservationRepository(session).get(reservation_id, for_update=True)
        try:
            if r.user_id != requesting_user_id and not override:
                raise Forbidden("only the owner can cancel this booking")
            if r.status != ReservationStatus.CONFIRMED:
                raise InvalidTransition(f"booking is {r.status}")
            if now >= r.start:
                raise InvalidTransition("booking has already started")
            _mark_cancelled(session, r, reason or "user_cancelled", now)
        except BookingError:
            session.rollback()
            raise
        commit_or_raise(session, "cancellation")
        session.refresh(r)
    logger.info("[booking] cancelled id=%s refund=%s", r.id, r.amount)
    publish_event("BookingCancelled", {**_event_payload(r), "reason": r.cancel_reason})
    return r


def _mark_cancelled(session: Session, r: Reservation, reason: str, now: datetime):
    r.status = ReservationStatus.CANCELLED.value
    r.cancelled_at = now
    r.cancel_reason = reason
    session.add(r)
    wallet.credit(session, r.user_id, r.amount, "refund", reservation_id=r.id)


# ------------------------------------------------------------
# Machine passée en maintenance / hors service :
# toutes les réservations CONFIRMED non terminées (y compris celle
# en cours) sont annulées et remboursées. Appelé sous le verrou de
# la machine, sans commit (voir machines.update_status).
# ------------------------------------------------------------
def cancel_for_machine(session: Session, machine_id: int, reason: str, now: datetime):
    cancelled = []
    repo = ReservationRepository(session)
    for r in repo.confirmed_for_machine(machine_id, ending_after=now, for_update=True):
        _mark_cancelled(session, r, reason, now)
        cancelled.append(r)
    return cancelled


def notify_cancelled(reservations):
    for r in reservations:
        logger.info("[booking] cancelled id=%s (%s) refund=%s", r.id, r.cancel_reason, r.amount)
        publish_event("BookingCancelled", {**_event_payload(r), "reason": r.cancel_reason})
