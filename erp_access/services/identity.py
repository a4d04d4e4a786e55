"""Identity context — who is acting, and from where.

Both values live in contextvars so they follow the current request or task.
The host application's authentication sets the actor; ClientContextMiddleware
sets the client context.
"""

from contextvars import ContextVar, Token
from typing import Optional

from erp_access.schemas.schemas import ActorIdentity, ClientContext, Principal

_current_actor: ContextVar[Optional[ActorIdentity]] = ContextVar("current_actor", default=None)
_client_context: ContextVar[Optional[ClientContext]] = ContextVar("client_context", default=None)


def set_current_actor(actor: Optional[ActorIdentity]) -> Token:
    return _current_actor.set(actor)


def get_current_actor() -> Optional[ActorIdentity]:
    return _current_actor.get()


def reset_current_actor(token: Token) -> None:
    _current_actor.reset(token)


def set_client_context(context: Optional[ClientContext]) -> Token:
    return _client_context.set(context)


def get_client_context() -> Optional[ClientContext]:
    return _client_context.get()


def reset_client_context(token: Token) -> None:
    _client_context.reset(token)


def identity_from_principal(principal: Principal) -> ActorIdentity:
    """Actor identity for a loaded principal; display name falls back to email."""
    return ActorIdentity(
        id=str(principal.id),
        email=principal.email,
        display_name=principal.full_name or principal.email,
    )
