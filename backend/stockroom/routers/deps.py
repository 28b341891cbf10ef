"""Request-scoped dependencies shared by the stock routers."""

from __future__ import annotations

from typing import Optional

from fastapi import Header, HTTPException

from stockroom.core.context import Actor


def get_actor(
    x_organization_id: Optional[int] = Header(None, alias="X-Organization-Id"),
    x_user_id: Optional[int] = Header(None, alias="X-User-Id"),
) -> Actor:
    """Resolve the calling tenant from the request headers.

    Authentication lives in front of this service; by the time a request
    arrives here the gateway has stamped the organization (and optionally
    the user) it was issued for.
    """
    if x_organization_id is None:
        raise HTTPException(status_code=400, detail="X-Organization-Id header is required")
    return Actor(organization_id=x_organization_id, user_id=x_user_id)
