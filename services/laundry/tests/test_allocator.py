from datetime import datetime, timedelta

import pytest

import allocator
import lifecycle
from conftest import DAY, NOW, at
from errors import InvalidRequest, MachineUnavailable, OutOfWindow
from models import MachineStatus
from timeutils import to_utc


def utc(dt):
    return to_utc(dt)


def test_merge_joins_overlapping_and_touching_intervals():
    t = datetime(2030, 1, 7, 10)
    h = timedelta(hours=1)
    merged = allocator.merge([(t + 3 * h, t + 4 * h), (t, t + h), (t + h, t + 2 * h), (t + 30 * h / 60, t + 90 * h / 60)])
    assert merged == [(t, t + 2 * h), (t + 3 * h, t + 4 * h)]


def test_complement_of_nothing_is_the_window():
    w = (datetime(2030, 1, 7, 13), datetime(2030, 1, 8, 1))
    assert allocator.complement(w, []) == [w]


def test_overlap_is_half_open():
    a, b, c = at(9), at(10), at(11)
    assert allocator.overlaps(a, c, b, c)
    assert not allocator.overlaps(a, b, b, c)


def test_empty_day_is_fully_free(session, machine):
    slots = allocator.available_slots(session, machine.id, DAY)
    assert [(s.start, s.end) for s in slots] == [(utc(at(8)), utc(at(20)))]
    assert allocator.busy_slots(session, machine.id, DAY) == []


def test_free_slots_are_the_gaps_between_bookings(session, machine, make_user):
    user = make_user(balance=500)
    lifecycle.create_booking(session, user.id, machine.id, at(9), 60, now=NOW)
    lifecycle.create_booking(session, user.id, machine.id, at(10), 30, now=NOW)
    lifecycle.create_booking(session, user.id, machine.id, at(14), 120, now=NOW)

    free = [(s.start, s.end) for s in allocator.available_slots(session, machine.id, DAY)]
    assert free == [
        (utc(at(8)), utc(at(9))),
        (utc(at(10, 30)), utc(at(14))),
        (utc(at(16)), utc(at(20))),
    ]


def test_free_and_busy_rebuild_the_window(session, machine, make_user):
    user = make_user(balance=500)
    for hour, minutes in ((8, 45), (11, 60), (12, 30), (19, 60)):
        lifecycle.create_booking(session, user.id, machine.id, at(hour), minutes, now=NOW)

    free = allocator.available_slots(session, machine.id, DAY)
    busy = allocator.busy_slots(session, machine.id, DAY)
    pieces = sorted([(s.start, s.end) for s in free + busy])

    assert pieces[0][0] == utc(at(8))
    assert pieces[-1][1] == utc(at(20))
    for (_, end), (start, _) in zip(pieces, pieces[1:]):
        # ni trou ni recouvrement
        assert end == start


def test_cancelled_booking_frees_its_slot(session, machine, make_user):
    user = make_user()
    r = lifecycle.create_booking(session, user.id, machine.id, at(9), 60, now=NOW)
    assert not allocator.is_available(session, machine.id, utc(at(9, 30)), 30)

    lifecycle.cancel_booking(session, r.id, user.id, now=NOW)
    assert allocator.is_available(session, machine.id, utc(at(9, 30)), 30)
    assert len(allocator.available_slots(session, machine.id, DAY)) == 1


def test_adjacent_booking_is_available(session, machine, make_user):
    user = make_user()
    lifecycle.create_booking(session, user.id, machine.id, at(9), 60, now=NOW)
    assert allocator.is_available(session, machine.id, utc(at(10)), 60)
    assert allocator.is_available(session, machine.id, utc(at(8)), 60)
    assert not allocator.is_available(session, machine.id, utc(at(8, 30)), 60)


def test_is_available_rejects_non_positive_duration(session, machine):
    with pytest.raises(InvalidRequest):
        allocator.is_available(session, machine.id, utc(at(9)), 0)


@pytest.mark.parametrize("start,duration", [(at(7), 60), (at(7, 30), 60), (at(19, 30), 60), (at(21), 30)])
def test_requests_outside_the_window_are_rejected(machine, start, duration):
    with pytest.raises(OutOfWindow):
        allocator.check_request(machine, utc(start), duration)


def test_request_inside_the_window_returns_its_end(machine):
    assert allocator.check_request(machine, utc(at(19)), 60) == utc(at(20))


@pytest.mark.parametrize("duration", [0, -15, 10_000])
def test_invalid_durations(machine, duration):
    with pytest.raises(InvalidRequest):
        allocator.check_request(machine, utc(at(9)), duration)


@pytest.mark.parametrize("status", [MachineStatus.IN_USE, MachineStatus.MAINTENANCE, MachineStatus.OFFLINE])
def test_machine_must_be_available(machine, status):
    machine.status = status.value
    with pytest.raises(MachineUnavailable):
        allocator.check_request(machine, utc(at(9)), 60)
