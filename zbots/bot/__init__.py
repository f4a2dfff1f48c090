"""Discord side of ZBØTS: platform client, command routing and the
multi-tenant session supervisor."""

from .client import EventKind, InboundEvent, TenantBot
from .router import CommandName, CommandRouter
from .supervisor import SessionState, SessionSupervisor, StartFailure

__all__ = [
    "EventKind",
    "InboundEvent",
    "TenantBot",
    "CommandName",
    "CommandRouter",
    "SessionState",
    "SessionSupervisor",
    "StartFailure",
]
