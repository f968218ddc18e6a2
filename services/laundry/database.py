# ============================================================
# database.py : Moteur SQLModel et sessions
# ------------------------------------------------------------
# Un seul moteur pour le service. Les routes reçoivent une
# Session par requête via la dépendance get_session().
# ============================================================
import logging

from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import config

logger = logging.getLogger(__name__)


def make_engine(url: str):
    if url.startswith("sqlite"):
        # SQLite : partage entre threads ; en mémoire = une seule connexion
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)


engine = make_engine(config.DATABASE_URL)


def init_db():
    import models  # noqa: F401  (enregistre les tables)

    SQLModel.metadata.create_all(engine)
    logger.info("[db] tables ready on %s", engine.url.render_as_string(hide_password=True))


# Dépendance FastAPI : fournit une Session DB par requête, auto-close
def get_session():
    with Session(engine) as s:
        yield s
