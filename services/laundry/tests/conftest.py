import os

# Avant tout import du service : SQLite en mémoire, pas de RabbitMQ
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RABBITMQ_HOST"] = ""
os.environ["LOCAL_TZ"] = "America/Toronto"

from datetime import date, datetime, time  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session, SQLModel  # noqa: E402

import config  # noqa: E402
import database  # noqa: E402
import models  # noqa: E402
from models import Hostel, Machine, Role, User  # noqa: E402

# Un lundi d'hiver (pas de changement d'heure) loin dans le futur
DAY = date(2030, 1, 7)


def at(hour, minute=0, day=DAY):
    return datetime.combine(day, time(hour, minute), tzinfo=config.LOCAL_TZ)


# "maintenant" par défaut des tests du cœur : la veille à midi
NOW = at(12, day=date(2030, 1, 6))


def headers(user_or_id, role=None):
    if isinstance(user_or_id, User):
        return {"X-User-Id": str(user_or_id.id), "X-User-Role": user_or_id.role}
    return {"X-User-Id": str(user_or_id), "X-User-Role": role}


@pytest.fixture(autouse=True)
def fresh_db():
    SQLModel.metadata.drop_all(database.engine)
    SQLModel.metadata.create_all(database.engine)
    yield


@pytest.fixture
def session():
    with Session(database.engine) as s:
        yield s


@pytest.fixture
def client():
    from app import app

    with TestClient(app) as c:
        yield c


@pytest.fixture
def hostel(session):
    h = Hostel(name="Hostel 6")
    session.add(h)
    session.commit()
    session.refresh(h)
    return h


@pytest.fixture
def machine(session, hostel):
    # fenêtre 08:00–20:00, 10 par heure
    m = Machine(name="W-1", hostel_id=hostel.id, cycle_minutes=60, cost_per_cycle=10.0,
                opens_at=time(8, 0), closes_at=time(20, 0))
    session.add(m)
    session.commit()
    session.refresh(m)
    return m


@pytest.fixture
def make_user(session, hostel):
    counter = {"n": 0}

    def factory(role=Role.STUDENT, balance=100.0, hostel_id=None):
        counter["n"] += 1
        u = User(
            name=f"user{counter['n']}",
            email=f"user{counter['n']}@mnit.ac.in",
            role=role.value,
            hostel_id=hostel_id or hostel.id,
            wallet_balance=balance,
        )
        session.add(u)
        session.commit()
        session.refresh(u)
        return u

    return factory


def balance_of(session, user_id):
    session.expire_all()
    return session.get(models.User, user_id).wallet_balance
