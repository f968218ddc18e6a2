# ============================================================
# locks.py : Verrous par machine et par portefeuille
# ------------------------------------------------------------
# Vérification de chevauchement + débit + insertion doivent être
# atomiques pour une même machine et pour un même utilisateur.
# Dans un processus : un threading.Lock par clé. Entre processus :
# SELECT ... FOR UPDATE sur les lignes Machine et User
# (voir repository.py).
# Ordre d'acquisition : machine puis utilisateur, jamais l'inverse.
# ============================================================
import threading
from contextlib import contextmanager

_registry_lock = threading.Lock()
_locks = {}


def lock_for(kind: str, key: int) -> threading.Lock:
    with _registry_lock:
        lock = _locks.get((kind, key))
        if lock is None:
            lock = _locks[(kind, key)] = threading.Lock()
        return lock


@contextmanager
def machine_lock(machine_id: int):
    with lock_for("machine", machine_id):
        yield


@contextmanager
def user_lock(user_id: int):
    with lock_for("user", user_id):
        yield
