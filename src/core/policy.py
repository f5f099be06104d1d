"""Policy engine - role resolution and capability checks.

This module is the single authorization choke point. Every service asks the
RoleResolver for the acting user before it does anything on their behalf:

    user = await RoleResolver(db).require(actor_id, Capability.REQUEST_RESPOND)

Role dispatch is a closed enum plus a static capability table; there is no
role class hierarchy.

Capability matrix:
  Capability              | subject | controller | dpo
  ------------------------|---------|------------|-----
  consent.manage          |   yes   |     no     |  no
  request.submit          |   yes   |     no     |  no
  request.respond         |   no    |    yes     | yes
  message.send            |   yes   |    yes     | yes
  contacts.read           |   yes   |    yes     | yes
  privacy_notice.read     |   yes   |    yes     | yes
  privacy_notice.publish  |   no    |    yes     | yes
  questionnaire.manage    |   no    |    yes     | yes
  notification.read       |   yes   |    yes     | yes

Controller and DPO are kept as separate roles even though they currently
map to the same capability set.
"""

from __future__ import annotations

import uuid
from enum import StrEnum
from typing import Protocol

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.errors import AuthorizationError
from src.models.user import Role, User

log = structlog.get_logger(__name__)


class Capability(StrEnum):
    CONSENT_MANAGE = "consent.manage"
    REQUEST_SUBMIT = "request.submit"
    REQUEST_RESPOND = "request.respond"
    MESSAGE_SEND = "message.send"
    CONTACTS_READ = "contacts.read"
    PRIVACY_NOTICE_READ = "privacy_notice.read"
    PRIVACY_NOTICE_PUBLISH = "privacy_notice.publish"
    QUESTIONNAIRE_MANAGE = "questionnaire.manage"
    NOTIFICATION_READ = "notification.read"


_COMMON: frozenset[Capability] = frozenset(
    {
        Capability.MESSAGE_SEND,
        Capability.CONTACTS_READ,
        Capability.PRIVACY_NOTICE_READ,
        Capability.NOTIFICATION_READ,
    }
)

_STAFF: frozenset[Capability] = _COMMON | {
    Capability.REQUEST_RESPOND,
    Capability.PRIVACY_NOTICE_PUBLISH,
    Capability.QUESTIONNAIRE_MANAGE,
}

_ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.SUBJECT: _COMMON | {Capability.CONSENT_MANAGE, Capability.REQUEST_SUBMIT},
    Role.CONTROLLER: _STAFF,
    Role.DPO: _STAFF,
}


class _HasId(Protocol):
    id: uuid.UUID


Principal = uuid.UUID | _HasId


def capabilities_for(role: Role | str) -> frozenset[Capability]:
    """Return the capability set granted to a role (empty for unknown roles)."""
    try:
        return _ROLE_CAPABILITIES[Role(role)]
    except ValueError:
        return frozenset()


def has_capability(role: Role | str, capability: Capability) -> bool:
    return capability in capabilities_for(role)


def _principal_id(principal: Principal) -> uuid.UUID:
    if isinstance(principal, uuid.UUID):
        return principal
    return principal.id


class RoleResolver:
    """Maps an authenticated principal to its User row and role."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def resolve_user(self, principal: Principal) -> User:
        user_id = _principal_id(principal)
        user = await self._db.get(User, user_id)
        if user is None or not user.is_active:
            log.warning("policy.unknown_principal", user_id=str(user_id))
            raise AuthorizationError("Unknown or inactive principal")
        if not user.role:
            raise AuthorizationError("Principal has no role")
        return user

    async def resolve_role(self, principal: Principal) -> Role:
        user = await self.resolve_user(principal)
        return Role(user.role)

    async def require(self, principal: Principal, capability: Capability) -> User:
        """Resolve the principal and check it holds ``capability``.

        Returns the User so callers do not need a second lookup.
        Raises AuthorizationError when the role lacks the capability.
        """
        user = await self.resolve_user(principal)
        if not has_capability(user.role, capability):
            log.warning(
                "policy.permission_denied",
                user_id=str(user.id),
                role=user.role,
                capability=capability,
            )
            raise AuthorizationError(
                f"Permission denied: role '{user.role}' lacks '{capability}'"
            )
        return user
