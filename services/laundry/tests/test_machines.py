from datetime import time

import pytest

import allocator
import lifecycle
import machines
from conftest import NOW, at, balance_of
from errors import Conflict, InvalidRequest, MachineUnavailable, NotFound
from models import MachineCreate, MachineStatus, ReservationStatus
from repository import MachineRepository, ReservationRepository


def test_create_machine_uses_default_window(session, hostel):
    m = machines.create_machine(session, MachineCreate(name="W-2", hostel_id=hostel.id, cost_per_cycle=12))
    assert (m.opens_at, m.closes_at) == (time(8, 0), time(20, 0))
    assert m.status == MachineStatus.AVAILABLE


def test_create_machine_validation(session, hostel):
    with pytest.raises(NotFound):
        machines.create_machine(session, MachineCreate(name="W-2", hostel_id=404))
    with pytest.raises(InvalidRequest):
        machines.create_machine(session, MachineCreate(name="W-2", hostel_id=hostel.id,
                                                       opens_at=time(20), closes_at=time(8)))
    with pytest.raises(InvalidRequest):
        machines.create_machine(session, MachineCreate(name="W-2", hostel_id=hostel.id, cycle_minutes=0))


def test_maintenance_cancels_and_refunds_open_bookings(session, machine, make_user):
    past_user = make_user()
    running_user = make_user()
    future_user = make_user()
    done_user = make_user()

    past = lifecycle.create_booking(session, past_user.id, machine.id, at(8), 30, now=NOW)
    done = lifecycle.create_booking(session, done_user.id, machine.id, at(8, 30), 30, now=NOW)
    running = lifecycle.create_booking(session, running_user.id, machine.id, at(9), 60, now=NOW)
    future = lifecycle.create_booking(session, future_user.id, machine.id, at(15), 60, now=NOW)
    lifecycle.complete_booking(session, done.id, now=at(8, 35))

    m, cancelled = machines.update_status(session, machine.id, MachineStatus.MAINTENANCE,
                                          changed_by=7, note="drum noise", now=at(9, 20))

    assert m.status == MachineStatus.MAINTENANCE
    assert sorted(r.id for r in cancelled) == sorted([running.id, future.id])
    repo = ReservationRepository(session)
    assert repo.get(running.id).cancel_reason == "machine_maintenance"
    assert repo.get(future.id).status == ReservationStatus.CANCELLED
    # déjà terminée : laissée telle quelle
    assert repo.get(past.id).status == ReservationStatus.CONFIRMED
    assert repo.get(done.id).status == ReservationStatus.COMPLETED

    assert balance_of(session, running_user.id) == 100
    assert balance_of(session, future_user.id) == 100
    assert balance_of(session, past_user.id) == 95


def test_machine_under_maintenance_cannot_be_booked(session, machine, make_user):
    user = make_user()
    machines.update_status(session, machine.id, MachineStatus.MAINTENANCE, now=NOW)
    with pytest.raises(MachineUnavailable):
        lifecycle.create_booking(session, user.id, machine.id, at(9), 60, now=NOW)

    machines.update_status(session, machine.id, MachineStatus.AVAILABLE, now=NOW)
    assert lifecycle.create_booking(session, user.id, machine.id, at(9), 60, now=NOW).id


def test_status_history(session, machine):
    machines.update_status(session, machine.id, MachineStatus.OFFLINE, changed_by=1, now=at(7))
    machines.update_status(session, machine.id, MachineStatus.AVAILABLE, changed_by=2, note="fixed", now=at(8))

    history = machines.maintenance_history(session, machine.id)
    assert [(h.old_status, h.new_status, h.changed_by) for h in history] == [
        ("offline", "available", 2),
        ("available", "offline", 1),
    ]


def test_in_use_status_keeps_bookings(session, machine, make_user):
    user = make_user()
    r = lifecycle.create_booking(session, user.id, machine.id, at(9), 60, now=NOW)
    _, cancelled = machines.update_status(session, machine.id, MachineStatus.IN_USE, now=at(9, 5))
    assert cancelled == []
    assert ReservationRepository(session).get(r.id).status == ReservationStatus.CONFIRMED


def test_retire_refused_with_active_booking(session, machine, make_user):
    user = make_user()
    r = lifecycle.create_booking(session, user.id, machine.id, at(9), 60, now=NOW)
    with pytest.raises(Conflict) as exc:
        machines.retire_machine(session, machine.id)
    assert exc.value.reservation_id == r.id

    lifecycle.cancel_booking(session, r.id, user.id, now=NOW)
    machines.retire_machine(session, machine.id)
    assert MachineRepository(session).get(machine.id) is None
    with pytest.raises(NotFound):
        allocator.available_slots(session, machine.id, at(9).date())
