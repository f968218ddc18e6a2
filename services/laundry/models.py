# ============================================================
# models.py : Modèles de données SQLModel (Laundry Service)
# ------------------------------------------------------------
# Tables :
#   1. Hostel / Machine / MachineStatusChange : données de référence
#   2. User / WalletEntry : utilisateurs et grand livre du portefeuille
#   3. Reservation : créneau réservé sur une machine
#   4. Message : messagerie directe étudiants <-> staff/admin
# Plus les corps de requête (modèles sans table).
# ============================================================
from datetime import datetime, time, timedelta, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, SQLModel

import config
from timeutils import utcnow


# ------------------------------------------------------------
# UTCTimestamp : colonne d'instant
# ------------------------------------------------------------
# Écrit l'UTC sans fuseau (TIMESTAMP simple, identique sur
# PostgreSQL et SQLite) et relit un datetime UTC avec tzinfo.
# Les paramètres des requêtes (Reservation.start < end, ...)
# passent par le même convertisseur.
# ------------------------------------------------------------
class UTCTimestamp(TypeDecorator):
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class Role(str, Enum):
    STUDENT = "student"
    STAFF = "staff"
    ADMIN = "admin"


class MachineStatus(str, Enum):
    AVAILABLE = "available"
    IN_USE = "in_use"
    MAINTENANCE = "maintenance"
    OFFLINE = "offline"


# Cycle de vie : CONFIRMED → COMPLETED | CANCELLED (états terminaux)
class ReservationStatus(str, Enum):
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Hostel(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    address: Optional[str] = None


# ------------------------------------------------------------
# Machine
# ------------------------------------------------------------
# opens_at / closes_at : fenêtre d'ouverture quotidienne, heure locale
# is_active=False : machine retirée (jamais supprimée physiquement,
# l'historique des réservations la référence)
# ------------------------------------------------------------
class Machine(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    hostel_id: int = Field(foreign_key="hostel.id", index=True)
    status: str = MachineStatus.AVAILABLE.value
    cycle_minutes: int = 60
    cost_per_cycle: float = 0.0
    opens_at: time = Field(default_factory=lambda: config.DEFAULT_OPENS_AT)
    closes_at: time = Field(default_factory=lambda: config.DEFAULT_CLOSES_AT)
    is_active: bool = True


class MachineStatusChange(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    machine_id: int = Field(foreign_key="machine.id", index=True)
    old_status: str
    new_status: str
    changed_by: Optional[int] = None
    note: Optional[str] = None
    changed_at: datetime = Field(default_factory=utcnow, sa_type=UTCTimestamp)


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str = Field(index=True, unique=True)
    role: str = Role.STUDENT.value
    room_number: Optional[str] = None
    hostel_id: Optional[int] = Field(default=None, foreign_key="hostel.id")
    wallet_balance: float = 0.0
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCTimestamp)


# Une ligne par mouvement : montant signé (+ crédit, - débit)
class WalletEntry(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    amount: float
    reason: str
    reservation_id: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCTimestamp)


# ------------------------------------------------------------
# Reservation
# ------------------------------------------------------------
# Intervalle semi-ouvert [start, end), instants UTC.
# duration en minutes ; end = start + duration (stocké pour
# pouvoir filtrer en SQL).
# access_code : émis à la création, consommé à la complétion.
# ------------------------------------------------------------
class Reservation(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    machine_id: int = Field(foreign_key="machine.id", index=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    hostel_id: int = Field(foreign_key="hostel.id")
    start: datetime = Field(index=True, sa_type=UTCTimestamp)
    duration: int
    end: datetime = Field(index=True, sa_type=UTCTimestamp)
    amount: float
    status: str = Field(default=ReservationStatus.CONFIRMED.value, index=True)
    access_code: str
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCTimestamp)
    completed_at: Optional[datetime] = Field(default=None, sa_type=UTCTimestamp)
    cancelled_at: Optional[datetime] = Field(default=None, sa_type=UTCTimestamp)
    cancel_reason: Optional[str] = None

    @staticmethod
    def end_of(start: datetime, duration: int) -> datetime:
        return start + timedelta(minutes=duration)


class Message(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    sender_id: int = Field(foreign_key="user.id", index=True)
    receiver_id: int = Field(foreign_key="user.id", index=True)
    content: str
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCTimestamp)
    read_at: Optional[datetime] = Field(default=None, sa_type=UTCTimestamp)


# Créneau libre ou occupé renvoyé par l'allocateur
class Slot(SQLModel):
    start: datetime
    end: datetime


# ------------------------------------------------------------
# Corps de requêtes
# ------------------------------------------------------------
class BookingCreate(SQLModel):
    machine_id: int
    start: datetime
    duration: int


class AccessCodeCheck(SQLModel):
    machine_id: int
    code: str


class CancelRequest(SQLModel):
    reason: Optional[str] = None


class MachineCreate(SQLModel):
    name: str
    hostel_id: int
    cycle_minutes: int = 60
    cost_per_cycle: float = 0.0
    opens_at: Optional[time] = None
    closes_at: Optional[time] = None


class MachineStatusUpdate(SQLModel):
    status: MachineStatus
    note: Optional[str] = None


class HostelCreate(SQLModel):
    name: str
    address: Optional[str] = None


class UserCreate(SQLModel):
    name: str
    email: str
    role: Role = Role.STUDENT
    room_number: Optional[str] = None
    hostel_id: Optional[int] = None


class WalletCredit(SQLModel):
    amount: float
    reason: str = "top_up"


class MessageCreate(SQLModel):
    receiver_id: int
    content: str
