"""
Authorization gate for lifecycle operations.

Every service operation receives an explicit ``Actor`` and calls
``ensure_can_act`` once; route handlers never re-check roles or departments
themselves.
"""
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Union

from sqlalchemy import and_, false, or_, true

from ..errors import AccessDenied
from ..models.models import Role, Service, ServiceRequest, User


@dataclass(frozen=True)
class Actor:
    id: uuid.UUID
    role: Role
    department_id: Optional[uuid.UUID] = None
    name: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(
            id=user.id,
            role=Role(user.role),
            department_id=user.department_id,
            name=user.name,
            email=user.email,
        )


Target = Union[ServiceRequest, Service]

ALL_ROLES = frozenset(Role)
REVIEW_ROLES = frozenset({Role.OFFICER, Role.DEPARTMENT_HEAD, Role.ADMIN})
SUPERVISOR_ROLES = frozenset({Role.DEPARTMENT_HEAD, Role.ADMIN})


def _target_department(target: Target) -> Optional[uuid.UUID]:
    if isinstance(target, Service):
        return target.department_id
    return target.service.department_id if target.service else None


def _citizen_scope(actor: Actor, target: Target) -> bool:
    # Any citizen may apply for any service, but only sees their own requests
    if isinstance(target, Service):
        return True
    return target.citizen_id == actor.id


def _department_scope(actor: Actor, target: Target) -> bool:
    if actor.department_id is None:
        return False
    return _target_department(target) == actor.department_id


def _global_scope(actor: Actor, target: Target) -> bool:
    return True


SCOPE_POLICIES: Dict[Role, Callable[[Actor, Target], bool]] = {
    Role.CITIZEN: _citizen_scope,
    Role.OFFICER: _department_scope,
    Role.DEPARTMENT_HEAD: _department_scope,
    Role.ADMIN: _global_scope,
}


def can_act(actor: Actor, target: Target, allowed: Optional[Iterable[Role]] = None) -> bool:
    """
    Check whether the actor may act on a request or service.

    Args:
        actor: Resolved identity performing the operation
        target: ServiceRequest or Service being acted on
        allowed: Roles permitted for the operation (defaults to every role)

    Returns:
        True if both the role and the department/ownership scope match
    """
    roles = ALL_ROLES if allowed is None else frozenset(allowed)
    if actor.role not in roles:
        return False
    policy = SCOPE_POLICIES.get(actor.role)
    if policy is None:
        raise LookupError(f"No authorization policy for role {actor.role!r}")
    return policy(actor, target)


def ensure_can_act(actor: Actor, target: Target, allowed: Optional[Iterable[Role]] = None) -> None:
    if not can_act(actor, target, allowed):
        raise AccessDenied()


def worklist_clause(actor: Actor):
    """
    SQL filter matching the requests an actor sees in their list views.

    Mirrors ``can_act`` scoping, with one narrowing: a plain officer only
    lists requests that are unassigned or assigned to them. The query must
    join ``Service``.
    """
    if actor.role == Role.ADMIN:
        return true()
    if actor.role == Role.CITIZEN:
        return ServiceRequest.citizen_id == actor.id
    if actor.role in (Role.OFFICER, Role.DEPARTMENT_HEAD):
        if actor.department_id is None:
            return false()
        clause = Service.department_id == actor.department_id
        if actor.role == Role.OFFICER:
            clause = and_(
                clause,
                or_(ServiceRequest.reviewed_by.is_(None), ServiceRequest.reviewed_by == actor.id),
            )
        return clause
    raise LookupError(f"No authorization policy for role {actor.role!r}")


def ensure_role(actor: Actor, allowed: Iterable[Role]) -> None:
    """Role-only check for operations that have no request or service target."""
    if actor.role not in frozenset(allowed):
        raise AccessDenied()
