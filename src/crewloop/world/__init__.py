"""World controller: pause/resume, automation levels, credit protection, emergency stop."""

from .controller import (
    ACTION_TYPES,
    AUTOMATION_LEVELS,
    EMERGENCY_RESET_TOKEN,
    WORLD_STATUSES,
    ControlResult,
    CreditStatus,
    Permission,
    WorldController,
)

__all__ = [
    "ACTION_TYPES",
    "AUTOMATION_LEVELS",
    "ControlResult",
    "CreditStatus",
    "EMERGENCY_RESET_TOKEN",
    "Permission",
    "WORLD_STATUSES",
    "WorldController",
]
