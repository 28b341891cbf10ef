"""Task-local request context (tenant + acting user).

Adapters bind the tenant at entry with :func:`tenant_scope`; the tenancy
hooks in :mod:`stockroom.core.tenancy` read it on every ORM query and flush.
Administrative sweeps (bootstrap, low-stock sweep, backups) opt out with
:func:`bypass_tenant_scope`.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Iterator, Optional


@dataclass(frozen=True)
class Actor:
    organization_id: int
    user_id: Optional[int] = None


_organization_id: ContextVar[Optional[int]] = ContextVar("organization_id", default=None)
_user_id: ContextVar[Optional[int]] = ContextVar("user_id", default=None)
_bypass: ContextVar[bool] = ContextVar("bypass_tenant_scope", default=False)


def current_organization_id() -> Optional[int]:
    return _organization_id.get()


def current_user_id() -> Optional[int]:
    return _user_id.get()


def tenant_scope_bypassed() -> bool:
    return _bypass.get()


@contextmanager
def tenant_scope(organization_id: int, user_id: Optional[int] = None) -> Iterator[None]:
    org_token = _organization_id.set(organization_id)
    user_token = _user_id.set(user_id)
    try:
        yield
    finally:
        _user_id.reset(user_token)
        _organization_id.reset(org_token)


@contextmanager
def actor_scope(actor: Actor) -> Iterator[Actor]:
    with tenant_scope(actor.organization_id, actor.user_id):
        yield actor


@contextmanager
def bypass_tenant_scope() -> Iterator[None]:
    token = _bypass.set(True)
    try:
        yield
    finally:
        _bypass.reset(token)
