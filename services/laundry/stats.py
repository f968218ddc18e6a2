# ============================================================
# stats.py : Statistiques de réservation
# ------------------------------------------------------------
# Projections en lecture seule sur la table Reservation,
# regroupées par statut et par propriétaire / machine.
# ============================================================
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlmodel import Session, select

from models import Reservation, ReservationStatus
from repository import ReservationRepository
from timeutils import utcnow


def _count(session: Session, *where) -> int:
    return session.exec(select(func.count(Reservation.id)).where(*where)).one()


def user_stats(session: Session, user_id: int, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    mine = Reservation.user_id == user_id
    completed = session.exec(
        select(func.coalesce(func.sum(Reservation.duration), 0), func.coalesce(func.sum(Reservation.amount), 0))
        .where(mine, Reservation.status == ReservationStatus.COMPLETED.value)
    ).one()
    return {
        "total_bookings": _count(session, mine),
        "completed_bookings": _count(session, mine, Reservation.status == ReservationStatus.COMPLETED.value),
        "upcoming_bookings": _count(
            session, mine, Reservation.status == ReservationStatus.CONFIRMED.value, Reservation.start > now
        ),
        "cancelled_bookings": _count(session, mine, Reservation.status == ReservationStatus.CANCELLED.value),
        "recent_bookings": ReservationRepository(session).for_user(user_id, limit=5),
        "total_minutes_used": int(completed[0]),
        "total_amount_spent": round(float(completed[1]), 2),
    }


def overview(session: Session) -> dict:
    by_status = {s.value: {"count": 0, "amount": 0.0} for s in ReservationStatus}
    rows = session.exec(
        select(Reservation.status, func.count(Reservation.id), func.coalesce(func.sum(Reservation.amount), 0))
        .group_by(Reservation.status)
    ).all()
    for status, count, amount in rows:
        by_status[status] = {"count": count, "amount": round(float(amount), 2)}

    per_machine = session.exec(
        select(Reservation.machine_id, func.count(Reservation.id))
        .where(Reservation.status != ReservationStatus.CANCELLED.value)
        .group_by(Reservation.machine_id)
        .order_by(Reservation.machine_id)
    ).all()
    return {
        "by_status": by_status,
        "bookings_per_machine": {machine_id: count for machine_id, count in per_machine},
        # les annulations sont remboursées
        "revenue": round(by_status["confirmed"]["amount"] + by_status["completed"]["amount"], 2),
    }
