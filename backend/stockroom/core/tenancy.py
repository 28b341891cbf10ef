"""
Tenant read/write hooks.

Every table that inherits :class:`stockroom.models.base.TenantScoped` is

* **filtered** on read: ``do_orm_execute`` attaches a
  ``with_loader_criteria`` restricting rows to the bound organisation, and
* **tagged** on write: ``before_flush`` stamps ``organization_id`` onto new
  rows and refuses to flush rows that belong to another organisation.

Both hooks are installed on :class:`sqlalchemy.orm.Session` itself so they
apply to every SQLModel session in the process.  Importing this module is
enough (``stockroom.core.database`` does it).
"""

from __future__ import annotations

import logging

from sqlalchemy import event
from sqlalchemy.orm import ORMExecuteState, Session, with_loader_criteria

from stockroom.core.context import current_organization_id, tenant_scope_bypassed
from stockroom.core.errors import DomainError, StockError
from stockroom.models.base import TenantScoped

logger = logging.getLogger(__name__)


class TenantScopeMissing(StockError):
    status_code = 500
    default_code = "tenant-scope-missing"


def tenant_models() -> list[type]:
    """Every mapped table class that mixes in :class:`TenantScoped`."""
    found, stack = [], list(TenantScoped.__subclasses__())
    while stack:
        cls = stack.pop()
        stack.extend(cls.__subclasses__())
        if getattr(cls, "__table__", None) is not None:
            found.append(cls)
    return found


def tenant_criteria(org_id: int) -> list:
    # the mixin itself is not mapped, so each table gets its own criterion
    return [
        with_loader_criteria(model, model.organization_id == org_id, include_aliases=True)
        for model in tenant_models()
    ]


@event.listens_for(Session, "do_orm_execute")
def _filter_reads(state: ORMExecuteState) -> None:
    if not state.is_select or state.is_column_load:
        return
    if tenant_scope_bypassed() or state.execution_options.get("skip_tenant_scope", False):
        return
    org_id = current_organization_id()
    if org_id is None:
        raise TenantScopeMissing("query issued without a bound organization")
    state.statement = state.statement.options(*tenant_criteria(org_id))


@event.listens_for(Session, "before_flush")
def _tag_writes(session: Session, flush_context, instances) -> None:  # noqa: ARG001
    bypass = tenant_scope_bypassed()
    org_id = current_organization_id()

    for obj in session.new:
        if not isinstance(obj, TenantScoped):
            continue
        if obj.organization_id is None:
            if org_id is None:
                raise TenantScopeMissing(f"cannot insert {type(obj).__name__} without an organization")
            obj.organization_id = org_id
        elif org_id is not None and obj.organization_id != org_id and not bypass:
            raise DomainError("cross-tenant-write", f"{type(obj).__name__} belongs to another organization")

    if bypass or org_id is None:
        return
    for obj in list(session.dirty) + list(session.deleted):
        if isinstance(obj, TenantScoped) and obj.organization_id != org_id:
            logger.warning(f"[tenancy] blocked write to {type(obj).__name__}#{getattr(obj, 'id', None)}")
            raise DomainError("cross-tenant-write", f"{type(obj).__name__} belongs to another organization")
