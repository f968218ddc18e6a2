# ============================================================
# access.py : Contrôle d'accès (passerelle d'authentification)
# ------------------------------------------------------------
# L'authentification est faite en amont : la passerelle transmet
# X-User-Id et X-User-Role. On construit un Caller par requête
# (pas d'état global) et on vérifie des capacités, jamais des
# chaînes de rôle éparpillées dans les routes.
# ============================================================
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from fastapi import Depends, Header, HTTPException

from errors import Forbidden
from models import Role

OVERRIDE_BOOKINGS = "bookings:override"
COMPLETE_BOOKINGS = "bookings:complete"
VIEW_ALL_BOOKINGS = "bookings:view_all"
SET_MACHINE_STATUS = "machines:status"
MANAGE_MACHINES = "machines:manage"
MANAGE_HOSTELS = "hostels:manage"
CREDIT_WALLETS = "wallet:credit"
MESSAGE_STUDENTS = "messages:students"

ROLE_CAPABILITIES = {
    Role.STUDENT: frozenset(),
    Role.STAFF: frozenset({
        OVERRIDE_BOOKINGS, COMPLETE_BOOKINGS, VIEW_ALL_BOOKINGS,
        SET_MACHINE_STATUS, MESSAGE_STUDENTS,
    }),
    Role.ADMIN: frozenset({
        OVERRIDE_BOOKINGS, COMPLETE_BOOKINGS, VIEW_ALL_BOOKINGS,
        SET_MACHINE_STATUS, MANAGE_MACHINES, MANAGE_HOSTELS,
        CREDIT_WALLETS, MESSAGE_STUDENTS,
    }),
}


@dataclass(frozen=True)
class Caller:
    user_id: int
    role: Role
    capabilities: FrozenSet[str] = field(default_factory=frozenset)

    def can(self, capability: str) -> bool:
        return capability in self.capabilities

    def check(self, capability: str):
        if not self.can(capability):
            raise Forbidden("insufficient permissions")


def make_caller(user_id: int, role) -> Caller:
    role = Role(role)
    return Caller(user_id=user_id, role=role, capabilities=ROLE_CAPABILITIES[role])


# Dépendance FastAPI : identité transmise par la passerelle
def get_caller(
    x_user_id: Optional[int] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Caller:
    if x_user_id is None or not x_user_role:
        raise HTTPException(401, "not authenticated")
    try:
        return make_caller(x_user_id, x_user_role.lower())
    except ValueError:
        raise HTTPException(401, "unknown role")


def require(capability: str):
    def dependency(caller: Caller = Depends(get_caller)) -> Caller:
        caller.check(capability)
        return caller
    return dependency
