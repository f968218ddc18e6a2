# ============================================================
# messages.py : Messagerie directe
# ------------------------------------------------------------
# Un seul contrat, versionné sous /v1/messages :
#   POST /v1/messages              {receiver_id, content}
#   GET  /v1/messages              mes messages (envoyés + reçus)
#   GET  /v1/messages/with/{id}    conversation, ordre chronologique
#   POST /v1/messages/read/{id}    marque comme lus ceux de {id}
#   GET  /v1/messages/unread/count
# Un étudiant n'écrit qu'au staff / aux admins.
# ============================================================
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import and_, func, or_
from sqlmodel import Session, select

import config
from access import MESSAGE_STUDENTS, Caller, get_caller
from database import get_session
from errors import Forbidden, InvalidRequest, NotFound
from models import Message, MessageCreate, Role
from publisher import publish_event
from repository import UserRepository
from timeutils import to_local, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/messages", tags=["messages"])


def message_view(m: Message) -> dict:
    return {
        "id": m.id,
        "sender_id": m.sender_id,
        "receiver_id": m.receiver_id,
        "content": m.content,
        "created_at": to_local(m.created_at),
        "read": m.read_at is not None,
    }


def send_message(session: Session, sender: Caller, receiver_id: int, content: str) -> Message:
    content = (content or "").strip()
    if not content:
        raise InvalidRequest("message is empty")
    if len(content) > config.MESSAGE_MAX_LENGTH:
        raise InvalidRequest(f"message longer than {config.MESSAGE_MAX_LENGTH} characters")
    if receiver_id == sender.user_id:
        raise InvalidRequest("cannot message yourself")
    receiver = UserRepository(session).get(receiver_id)
    if not receiver:
        raise NotFound("recipient not found")
    if receiver.role == Role.STUDENT and not sender.can(MESSAGE_STUDENTS):
        raise Forbidden("students can only message staff or admins")

    m = Message(sender_id=sender.user_id, receiver_id=receiver_id, content=content)
    session.add(m)
    session.commit()
    session.refresh(m)
    logger.info("[message] %s -> %s id=%s", m.sender_id, m.receiver_id, m.id)
    publish_event("MessageSent", {"messageId": m.id, "senderId": m.sender_id, "receiverId": m.receiver_id})
    return m


def inbox(session: Session, user_id: int, limit: int = 100):
    q = (
        select(Message)
        .where(or_(Message.sender_id == user_id, Message.receiver_id == user_id))
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(limit)
    )
    return list(session.exec(q).all())


def conversation(session: Session, user_id: int, other_id: int):
    q = (
        select(Message)
        .where(or_(
            and_(Message.sender_id == user_id, Message.receiver_id == other_id),
            and_(Message.sender_id == other_id, Message.receiver_id == user_id),
        ))
        .order_by(Message.created_at, Message.id)
    )
    return list(session.exec(q).all())


def mark_read(session: Session, user_id: int, sender_id: int, now: Optional[datetime] = None) -> int:
    unread = session.exec(
        select(Message).where(
            Message.receiver_id == user_id,
            Message.sender_id == sender_id,
            Message.read_at == None,  # noqa: E711
        )
    ).all()
    now = now or utcnow()
    for m in unread:
        m.read_at = now
        session.add(m)
    session.commit()
    return len(unread)


def unread_count(session: Session, user_id: int) -> int:
    return session.exec(
        select(func.count(Message.id)).where(Message.receiver_id == user_id, Message.read_at == None)  # noqa: E711
    ).one()


@router.post("", status_code=201)
def post_message(body: MessageCreate, s: Session = Depends(get_session), caller: Caller = Depends(get_caller)):
    return message_view(send_message(s, caller, body.receiver_id, body.content))


@router.get("")
def get_messages(s: Session = Depends(get_session), caller: Caller = Depends(get_caller)):
    return [message_view(m) for m in inbox(s, caller.user_id)]


@router.get("/with/{user_id}")
def get_conversation(user_id: int, s: Session = Depends(get_session), caller: Caller = Depends(get_caller)):
    return [message_view(m) for m in conversation(s, caller.user_id, user_id)]


@router.post("/read/{sender_id}")
def post_read(sender_id: int, s: Session = Depends(get_session), caller: Caller = Depends(get_caller)):
    return {"marked": mark_read(s, caller.user_id, sender_id)}


@router.get("/unread/count")
def get_unread_count(s: Session = Depends(get_session), caller: Caller = Depends(get_caller)):
    return {"count": unread_count(s, caller.user_id)}
