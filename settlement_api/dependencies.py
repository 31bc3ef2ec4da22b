"""
Request-scoped dependencies for the settlement REST surface.

Every endpoint obtains its transaction through ``get_unit_of_work`` and opens
it with ``with uow() as session:``.  The transaction commits when the block
exits, before the response is rendered, so a failing commit is reported to
the caller instead of being lost after a 2xx went out.
"""

from contextlib import AbstractContextManager
from dataclasses import dataclass
from functools import partial
from typing import Callable
from uuid import UUID

from fastapi import Header, Request
from sqlalchemy.orm import Session

from settlement_config.schema import SettlementConfig
from settlement_kernel.db.engine import session_scope
from settlement_kernel.exceptions import ValidationError

UnitOfWork = Callable[[], AbstractContextManager[Session]]


@dataclass(frozen=True)
class ActorContext:
    """
    The acting back-office user, taken from request headers.

    Used for audit columns and log context only; authentication and
    authorization happen in front of this service.
    """

    actor_id: UUID | None = None
    name: str | None = None
    email: str | None = None
    access_level: str | None = None


def get_config(request: Request) -> SettlementConfig:
    return request.app.state.config


def get_unit_of_work(request: Request) -> UnitOfWork:
    """A factory for one ``session_scope`` bounded by the configured timeout."""
    config: SettlementConfig = request.app.state.config
    return partial(
        session_scope,
        timeout_seconds=config.database.transaction_timeout_seconds,
    )


def _parse_actor_id(value: str | None) -> UUID | None:
    if value is None or not value.strip():
        return None
    try:
        return UUID(value.strip())
    except ValueError:
        raise ValidationError(f"X-Actor-Id is not a UUID: {value}") from None


def require_actor(
    x_actor_id: str | None = Header(None),
    x_actor_name: str | None = Header(None),
    x_actor_email: str | None = Header(None),
    x_actor_access_level: str | None = Header(None),
) -> ActorContext:
    """Actor headers for write endpoints; ``X-Actor-Id`` is mandatory."""
    actor_id = _parse_actor_id(x_actor_id)
    if actor_id is None:
        raise ValidationError("X-Actor-Id header is required for this operation")
    return ActorContext(
        actor_id=actor_id,
        name=x_actor_name,
        email=x_actor_email,
        access_level=x_actor_access_level,
    )
