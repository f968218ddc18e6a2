# ============================================================
# users.py : Inscription, profil et portefeuille
# ------------------------------------------------------------
# Le mot de passe et le jeton sont gérés par la passerelle
# d'authentification ; ici on ne garde que le profil.
# ============================================================
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

import lifecycle
import wallet
from access import CREDIT_WALLETS, Caller, get_caller, require
from database import get_session
from errors import Conflict, InvalidRequest, NotFound
from models import Role, User, UserCreate, WalletCredit
from repository import HostelRepository, UserRepository
from timeutils import to_local

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/users", tags=["users"])


def user_view(u: User, private: bool = False) -> dict:
    view = {"id": u.id, "name": u.name, "role": u.role, "hostel_id": u.hostel_id}
    if private:
        view.update(email=u.email, room_number=u.room_number, wallet_balance=u.wallet_balance)
    return view


def register(session: Session, body: UserCreate) -> User:
    email = body.email.strip().lower()
    if "@" not in email:
        raise InvalidRequest("invalid email")
    if body.role == Role.STUDENT and body.hostel_id is None:
        raise InvalidRequest("students must belong to a hostel")
    if body.hostel_id is not None and not HostelRepository(session).get(body.hostel_id):
        raise NotFound("hostel not found")
    if UserRepository(session).by_email(email):
        raise Conflict("user already exists")
    u = User(name=body.name, email=email, role=body.role.value,
             room_number=body.room_number, hostel_id=body.hostel_id)
    session.add(u)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise Conflict("user already exists")
    session.refresh(u)
    logger.info("[user] registered id=%s role=%s", u.id, u.role)
    return u


def credit_wallet(session: Session, user_id: int, amount: float, reason: str) -> User:
    if amount <= 0:
        raise InvalidRequest("amount must be positive")
    try:
        u = wallet.credit(session, user_id, amount, reason)
    except NotFound:
        session.rollback()
        raise
    lifecycle.commit_or_raise(session, "wallet credit")
    session.refresh(u)
    logger.info("[wallet] credited user=%s amount=%s", user_id, amount)
    return u


@router.post("", status_code=201)
def post_user(body: UserCreate, s: Session = Depends(get_session)):
    return user_view(register(s, body), private=True)


@router.get("/me")
def me(s: Session = Depends(get_session), caller: Caller = Depends(get_caller)):
    u = UserRepository(s).get(caller.user_id)
    if not u:
        raise NotFound("user not found")
    return user_view(u, private=True)


@router.get("/me/wallet")
def my_wallet(s: Session = Depends(get_session), caller: Caller = Depends(get_caller)):
    u = UserRepository(s).get(caller.user_id)
    if not u:
        raise NotFound("user not found")
    return {
        "balance": u.wallet_balance,
        "entries": [
            {
                "amount": e.amount,
                "reason": e.reason,
                "reservation_id": e.reservation_id,
                "created_at": to_local(e.created_at),
            }
            for e in wallet.history(s, u.id)
        ],
    }


# Contacts pour la messagerie (ex. tous les "staff")
@router.get("")
def list_users(role: Optional[Role] = None, s: Session = Depends(get_session),
               caller: Caller = Depends(get_caller)):
    return [user_view(u) for u in UserRepository(s).by_role(role.value if role else None)]


@router.post("/{user_id}/wallet/credit")
def post_credit(user_id: int, body: WalletCredit, s: Session = Depends(get_session),
                caller: Caller = Depends(require(CREDIT_WALLETS))):
    return user_view(credit_wallet(s, user_id, body.amount, body.reason), private=True)
