"""Shared state: team registry and the task/decision/activity store."""

from .context import StateContext, StateLimits
from .teams import DEFAULT_TEAMS, AgentProfile, TeamDescriptor, default_team_registry

__all__ = [
    "AgentProfile",
    "DEFAULT_TEAMS",
    "StateContext",
    "StateLimits",
    "TeamDescriptor",
    "default_team_registry",
]
