# ============================================================
# repository.py : Accès aux données
# ------------------------------------------------------------
# Design pattern "Repository" : isole les requêtes SQLModel de la
# couche API et du cœur métier (allocator / lifecycle).
# Les repositories ne font jamais de commit : c'est l'appelant
# qui délimite la transaction.
# ============================================================
from datetime import datetime
from typing import List, Optional

from sqlmodel import Session, select

from models import Hostel, Machine, Reservation, ReservationStatus, User

ACTIVE_STATUSES = (ReservationStatus.CONFIRMED.value, ReservationStatus.COMPLETED.value)


class ReservationRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, reservation_id: int, for_update: bool = False) -> Optional[Reservation]:
        q = select(Reservation).where(Reservation.id == reservation_id)
        if for_update:
            q = q.with_for_update().execution_options(populate_existing=True)
        return self.session.exec(q).first()

    # Réservations non annulées dont [start, end) coupe [start, end)
    def overlapping(self, machine_id: int, start: datetime, end: datetime) -> List[Reservation]:
        q = (
            select(Reservation)
            .where(
                Reservation.machine_id == machine_id,
                Reservation.status.in_(ACTIVE_STATUSES),
                Reservation.start < end,
                Reservation.end > start,
            )
            .order_by(Reservation.start, Reservation.id)
        )
        return list(self.session.exec(q).all())

    # for_update : relecture fraîche et verrouillée avant une transition
    def confirmed_for_machine(self, machine_id: int, ending_after: Optional[datetime] = None,
                              for_update: bool = False):
        q = select(Reservation).where(
            Reservation.machine_id == machine_id,
            Reservation.status == ReservationStatus.CONFIRMED.value,
        )
        if ending_after is not None:
            q = q.where(Reservation.end > ending_after)
        q = q.order_by(Reservation.start)
        if for_update:
            q = q.with_for_update().execution_options(populate_existing=True)
        return list(self.session.exec(q).all())

    def confirmed_codes(self, machine_id: int) -> set:
        q = select(Reservation.access_code).where(
            Reservation.machine_id == machine_id,
            Reservation.status == ReservationStatus.CONFIRMED.value,
        )
        return set(self.session.exec(q).all())

    def find_by_code(self, machine_id: int, code: str, now: datetime) -> Optional[Reservation]:
        q = select(Reservation).where(
            Reservation.machine_id == machine_id,
            Reservation.status == ReservationStatus.CONFIRMED.value,
            Reservation.access_code == code,
            Reservation.start <= now,
            Reservation.end > now,
        )
        return self.session.exec(q).first()

    def for_user(self, user_id: int, limit: Optional[int] = None):
        q = select(Reservation).where(Reservation.user_id == user_id).order_by(Reservation.start.desc())
        if limit:
            q = q.limit(limit)
        return list(self.session.exec(q).all())

    def search(self, status: Optional[str] = None, machine_id: Optional[int] = None, limit: int = 100):
        q = select(Reservation)
        if status:
            q = q.where(Reservation.status == status)
        if machine_id:
            q = q.where(Reservation.machine_id == machine_id)
        return list(self.session.exec(q.order_by(Reservation.start.desc()).limit(limit)).all())


class MachineRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, machine_id: int, for_update: bool = False) -> Optional[Machine]:
        q = select(Machine).where(Machine.id == machine_id, Machine.is_active == True)  # noqa: E712
        if for_update:
            q = q.with_for_update().execution_options(populate_existing=True)
        return self.session.exec(q).first()

    def list(self, hostel_id: Optional[int] = None):
        q = select(Machine).where(Machine.is_active == True)  # noqa: E712
        if hostel_id:
            q = q.where(Machine.hostel_id == hostel_id)
        return list(self.session.exec(q.order_by(Machine.id)).all())


class UserRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: int, for_update: bool = False) -> Optional[User]:
        q = select(User).where(User.id == user_id)
        if for_update:
            q = q.with_for_update().execution_options(populate_existing=True)
        return self.session.exec(q).first()

    def by_email(self, email: str) -> Optional[User]:
        return self.session.exec(select(User).where(User.email == email)).first()

    def by_role(self, role: Optional[str] = None):
        q = select(User)
        if role:
            q = q.where(User.role == role)
        return list(self.session.exec(q.order_by(User.name)).all())


class HostelRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, hostel_id: int) -> Optional[Hostel]:
        return self.session.get(Hostel, hostel_id)

    def list(self):
        return list(self.session.exec(select(Hostel).order_by(Hostel.name)).all())
