# ============================================================
# machines.py : Machines à laver (données de référence)
# ------------------------------------------------------------
# Lecture : tout utilisateur authentifié.
# Création / retrait : admin. Changement de statut : staff/admin.
# Passage en maintenance ou hors service : les réservations
# CONFIRMED non terminées sont annulées et remboursées.
# ============================================================
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session, select

import config
import lifecycle
from access import MANAGE_MACHINES, SET_MACHINE_STATUS, Caller, get_caller, require
from database import get_session
from errors import BookingError, Conflict, InvalidRequest, NotFound
from locks import machine_lock
from models import Machine, MachineCreate, MachineStatus, MachineStatusChange, MachineStatusUpdate
from publisher import publish_event
from repository import HostelRepository, MachineRepository, ReservationRepository
from timeutils import to_local, to_utc, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/machines", tags=["machines"])

# statuts qui rendent les réservations à venir inutilisables
CLOSING_STATUSES = (MachineStatus.MAINTENANCE, MachineStatus.OFFLINE)


def machine_view(m: Machine) -> dict:
    return {
        "id": m.id,
        "name": m.name,
        "hostel_id": m.hostel_id,
        "status": m.status,
        "cycle_minutes": m.cycle_minutes,
        "cost_per_cycle": m.cost_per_cycle,
        "opens_at": m.opens_at.strftime("%H:%M"),
        "closes_at": m.closes_at.strftime("%H:%M"),
    }


def create_machine(session: Session, body: MachineCreate) -> Machine:
    if not HostelRepository(session).get(body.hostel_id):
        raise NotFound("hostel not found")
    if body.cycle_minutes <= 0:
        raise InvalidRequest("cycle_minutes must be positive")
    if body.cost_per_cycle < 0:
        raise InvalidRequest("cost_per_cycle must not be negative")
    opens_at = body.opens_at or config.DEFAULT_OPENS_AT
    closes_at = body.closes_at or config.DEFAULT_CLOSES_AT
    if opens_at >= closes_at:
        raise InvalidRequest("opens_at must be before closes_at")
    m = Machine(
        name=body.name,
        hostel_id=body.hostel_id,
        cycle_minutes=body.cycle_minutes,
        cost_per_cycle=body.cost_per_cycle,
        opens_at=opens_at,
        closes_at=closes_at,
    )
    session.add(m)
    session.commit()
    session.refresh(m)
    logger.info("[machine] created id=%s hostel=%s", m.id, m.hostel_id)
    return m


# ------------------------------------------------------------
# update_status : Changement de statut d'une machine
# ------------------------------------------------------------
# Sous le verrou de la machine (pas de création concurrente) :
#   1) historique MachineStatusChange
#   2) maintenance/offline : annulation + remboursement des
#      réservations CONFIRMED qui ne sont pas encore terminées
#   3) un seul commit
# Retourne (machine, réservations annulées).
# ------------------------------------------------------------
def update_status(session: Session, machine_id: int, status: MachineStatus,
                  changed_by: Optional[int] = None, note: Optional[str] = None,
                  now: Optional[datetime] = None):
    now = to_utc(now) if now else utcnow()
    status = MachineStatus(status)
    with machine_lock(machine_id):
        try:
            m = MachineRepository(session).get(machine_id, for_update=True)
            if not m:
                raise NotFound("machine not found")
            old = m.status
            m.status = status.value
            session.add(m)
            session.add(MachineStatusChange(machine_id=m.id, old_status=old, new_status=status.value,
                                            changed_by=changed_by, note=note, changed_at=now))
            cancelled = []
            if status in CLOSING_STATUSES:
                cancelled = lifecycle.cancel_for_machine(session, m.id, f"machine_{status.value}", now)
        except BookingError:
            session.rollback()
            raise
        lifecycle.commit_or_raise(session, "status change")
        session.refresh(m)

    logger.info("[machine] id=%s %s -> %s (%d bookings cancelled)", m.id, old, m.status, len(cancelled))
    publish_event("MachineStatusChanged", {"machineId": m.id, "from": old, "to": m.status})
    lifecycle.notify_cancelled(cancelled)
    return m, cancelled


# Retrait : refusé tant qu'une réservation CONFIRMED référence la machine
def retire_machine(session: Session, machine_id: int) -> Machine:
    with machine_lock(machine_id):
        m = MachineRepository(session).get(machine_id, for_update=True)
        if not m:
            raise NotFound("machine not found")
        active = ReservationRepository(session).confirmed_for_machine(machine_id)
        if active:
            session.rollback()
            raise Conflict(f"machine has active reservation {active[0].id}", reservation_id=active[0].id)
        m.is_active = False
        m.status = MachineStatus.OFFLINE.value
        session.add(m)
        lifecycle.commit_or_raise(session, "machine retirement")
    logger.info("[machine] retired id=%s", machine_id)
    return m


def maintenance_history(session: Session, machine_id: int):
    q = (
        select(MachineStatusChange)
        .where(MachineStatusChange.machine_id == machine_id)
        .order_by(MachineStatusChange.changed_at.desc(), MachineStatusChange.id.desc())
    )
    return list(session.exec(q).all())


@router.get("")
def list_machines(hostel_id: Optional[int] = None, s: Session = Depends(get_session),
                  caller: Caller = Depends(get_caller)):
    return [machine_view(m) for m in MachineRepository(s).list(hostel_id)]


@router.get("/{machine_id}")
def get_machine(machine_id: int, s: Session = Depends(get_session), caller: Caller = Depends(get_caller)):
    m = MachineRepository(s).get(machine_id)
    if not m:
        raise NotFound("machine not found")
    return machine_view(m)


@router.post("", status_code=201)
def post_machine(body: MachineCreate, s: Session = Depends(get_session),
                 caller: Caller = Depends(require(MANAGE_MACHINES))):
    return machine_view(create_machine(s, body))


@router.put("/{machine_id}/status")
def put_status(machine_id: int, body: MachineStatusUpdate, s: Session = Depends(get_session),
               caller: Caller = Depends(require(SET_MACHINE_STATUS))):
    m, cancelled = update_status(s, machine_id, body.status, changed_by=caller.user_id, note=body.note)
    return {**machine_view(m), "cancelled_bookings": [r.id for r in cancelled]}


@router.delete("/{machine_id}")
def delete_machine(machine_id: int, s: Session = Depends(get_session),
                   caller: Caller = Depends(require(MANAGE_MACHINES))):
    retire_machine(s, machine_id)
    return {"id": machine_id, "retired": True}


@router.get("/{machine_id}/maintenance")
def get_maintenance(machine_id: int, s: Session = Depends(get_session),
                    caller: Caller = Depends(require(SET_MACHINE_STATUS))):
    if not MachineRepository(s).get(machine_id):
        raise NotFound("machine not found")
    return [
        {
            "id": c.id,
            "old_status": c.old_status,
            "new_status": c.new_status,
            "changed_by": c.changed_by,
            "note": c.note,
            "changed_at": to_local(c.changed_at),
        }
        for c in maintenance_history(s, machine_id)
    ]
