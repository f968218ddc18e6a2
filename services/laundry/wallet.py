# ============================================================
# wallet.py : Grand livre du portefeuille
# ------------------------------------------------------------
# debit / credit modifient le solde ET écrivent une WalletEntry,
# sans commit : ils s'inscrivent dans la transaction de l'appelant
# (réservation + débit doivent être validés ensemble).
# ============================================================
from typing import Optional

from sqlmodel import Session, select

from errors import InsufficientFunds, InvalidRequest, NotFound
from models import User, WalletEntry
from repository import UserRepository


def _locked_user(session: Session, user_id: int) -> User:
    user = UserRepository(session).get(user_id, for_update=True)
    if not user:
        raise NotFound("user not found")
    return user


def debit(session: Session, user_id: int, amount: float, reason: str,
          reservation_id: Optional[int] = None) -> User:
    if amount < 0:
        raise InvalidRequest("amount must not be negative")
    user = _locked_user(session, user_id)
    if user.wallet_balance < amount:
        raise InsufficientFunds("wallet balance too low")
    user.wallet_balance = round(user.wallet_balance - amount, 2)
    session.add(user)
    session.add(WalletEntry(user_id=user_id, amount=-amount, reason=reason, reservation_id=reservation_id))
    return user


def credit(session: Session, user_id: int, amount: float, reason: str,
           reservation_id: Optional[int] = None) -> User:
    if amount < 0:
        raise InvalidRequest("amount must not be negative")
    user = _locked_user(session, user_id)
    user.wallet_balance = round(user.wallet_balance + amount, 2)
    session.add(user)
    session.add(WalletEntry(user_id=user_id, amount=amount, reason=reason, reservation_id=reservation_id))
    return user


def history(session: Session, user_id: int, limit: int = 50):
    q = (
        select(WalletEntry)
        .where(WalletEntry.user_id == user_id)
        .order_by(WalletEntry.created_at.desc(), WalletEntry.id.desc())
        .limit(limit)
    )
    return list(session.exec(q).all())
