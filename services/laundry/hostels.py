# ============================================================
# hostels.py : Foyers (CRUD admin)
# ============================================================
from fastapi import APIRouter, Depends
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from access import MANAGE_HOSTELS, Caller, get_caller, require
from database import get_session
from errors import Conflict, NotFound
from models import Hostel, HostelCreate, Machine
from repository import HostelRepository

router = APIRouter(prefix="/v1/hostels", tags=["hostels"])


def _save(s: Session, h: Hostel) -> Hostel:
    s.add(h)
    try:
        s.commit()
    except IntegrityError:
        s.rollback()
        raise Conflict("a hostel with this name already exists")
    s.refresh(h)
    return h


def _get_or_404(s: Session, hostel_id: int) -> Hostel:
    h = HostelRepository(s).get(hostel_id)
    if not h:
        raise NotFound("hostel not found")
    return h


@router.get("")
def list_hostels(s: Session = Depends(get_session), caller: Caller = Depends(get_caller)):
    return HostelRepository(s).list()


@router.get("/{hostel_id}")
def get_hostel(hostel_id: int, s: Session = Depends(get_session), caller: Caller = Depends(get_caller)):
    return _get_or_404(s, hostel_id)


@router.post("", status_code=201)
def create_hostel(body: HostelCreate, s: Session = Depends(get_session),
                  caller: Caller = Depends(require(MANAGE_HOSTELS))):
    return _save(s, Hostel(name=body.name, address=body.address))


@router.put("/{hostel_id}")
def update_hostel(hostel_id: int, body: HostelCreate, s: Session = Depends(get_session),
                  caller: Caller = Depends(require(MANAGE_HOSTELS))):
    h = _get_or_404(s, hostel_id)
    h.name = body.name
    h.address = body.address
    return _save(s, h)


# Suppression refusée tant que des machines y sont rattachées
@router.delete("/{hostel_id}")
def delete_hostel(hostel_id: int, s: Session = Depends(get_session),
                  caller: Caller = Depends(require(MANAGE_HOSTELS))):
    h = _get_or_404(s, hostel_id)
    if s.exec(select(Machine).where(Machine.hostel_id == hostel_id)).first():
        raise Conflict("hostel still has machines")
    s.delete(h)
    s.commit()
    return {"id": hostel_id, "deleted": True}
