from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from crewloop.config import RuntimeSettings
from crewloop.state.context import new_id

logger = logging.getLogger(__name__)

WORLD_STATUSES = ("paused", "manual", "semi_auto", "autonomous")
AUTOMATION_LEVELS = ("stopped", "manual", "supervised", "autonomous")
ACTION_COSTS: dict[str, float] = {
    "think": 0.01,
    "execute": 0.05,
    "communicate": 0.02,
    "report": 0.03,
    "sync": 0.01,
    "research": 0.10,
    "create": 0.15,
    "review": 0.05,
}
ACTION_TYPES = tuple(ACTION_COSTS)
DEFAULT_ACTION_COST = 0.05
CREDIT_THRESHOLDS = (
    ("hard_stop", 1.0),
    ("critical", 0.9),
    ("caution", 0.75),
    ("warning", 0.5),
)
EMERGENCY_RESET_TOKEN = "CONFIRM_RESET"
CONTROL_LOG_CAP = 1000
CONTROL_LOG_KEEP = 500
PENDING_ACTION_CAP = 100

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


@dataclass(slots=True)
class Permission:
    allowed: bool
    reason: str
    code: str | None = None
    requires_approval: bool = False


@dataclass(slots=True)
class ControlResult:
    success: bool
    message: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TeamControl:
    paused: bool = False
    automation_level: str = "manual"
    allowed_actions: List[str] = field(default_factory=list)
    paused_ts: float | None = None
    paused_reason: str | None = None


@dataclass(slots=True)
class SpendWindow:
    spent: float
    limit: float
    remaining: float
    usage_percent: float


@dataclass(slots=True)
class CreditStatus:
    status: str
    can_proceed: bool
    message: str
    daily: SpendWindow
    monthly: SpendWindow


@dataclass(slots=True)
class CreditProtection:
    daily_limit: float = 50.0
    monthly_limit: float = 500.0
    daily_spent: float = 0.0
    monthly_spent: float = 0.0
    auto_stop_on_limit: bool = True
    daily_reset_ts: float | None = None
    monthly_reset_ts: float | None = None


@dataclass(slots=True)
class EmergencyStop:
    triggered: bool = False
    triggered_ts: float | None = None
    triggered_by: str | None = None
    reason: str | None = None
    requires_manual_reset: bool = False


@dataclass(slots=True)
class AutomationWindow:
    id: str
    start: str
    end: str
    teams: List[str] | None = None
    actions: List[str] | None = None

    def covers(self, hhmm: str, team_id: str, action_type: str) -> bool:
        if self.teams is not None and team_id not in self.teams:
            return False
        if self.actions is not None and action_type not in self.actions:
            return False
        if self.start <= self.end:
            return self.start <= hhmm <= self.end
        # window wraps past midnight; both ends inclusive
        return hhmm >= self.start or hhmm <= self.end


@dataclass(slots=True)
class AutomationSchedule:
    enabled: bool = False
    timezone: str = "UTC"
    windows: List[AutomationWindow] = field(default_factory=list)


@dataclass(slots=True)
class PendingAction:
    id: str
    team_id: str
    action_type: str
    parameters: dict[str, Any]
    requested_by: str
    requested_ts: float
    status: str
    estimated_cost: float
    resolved_by: str | None = None
    resolution_reason: str | None = None


@dataclass(slots=True)
class ControlLogEntry:
    ts: float
    action: str
    details: dict[str, Any] = field(default_factory=dict)


def _validate_hhmm(value: str, field_name: str) -> str:
    if not isinstance(value, str) or not _HHMM.match(value):
        raise ValueError(f"{field_name} must be HH:MM (24h)")
    return value


def _filter_actions(actions: Iterable[str] | None) -> list[str]:
    return [action for action in actions or [] if action in ACTION_COSTS]


class WorldController:
    """Process-wide permission and resource guard for team actions."""

    def __init__(
        self,
        team_ids: Iterable[str],
        *,
        daily_limit: float = 50.0,
        monthly_limit: float = 500.0,
        auto_stop_on_limit: bool = True,
        world_status: str = "manual",
        clock: Callable[[], float] = time.time,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        if world_status not in WORLD_STATUSES:
            raise ValueError(f"world_status must be one of: {', '.join(WORLD_STATUSES)}")
        if daily_limit <= 0 or monthly_limit <= 0:
            raise ValueError("credit limits must be positive")
        self._lock = threading.RLock()
        self._clock = clock
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.world_status = world_status
        self.global_paused = world_status == "paused"
        self.paused_ts: float | None = None
        self.paused_by: str | None = None
        self.pause_reason: str | None = None
        self.team_controls: dict[str, TeamControl] = {team_id: TeamControl() for team_id in team_ids}
        self.credit = CreditProtection(
            daily_limit=daily_limit,
            monthly_limit=monthly_limit,
            auto_stop_on_limit=auto_stop_on_limit,
        )
        self.emergency = EmergencyStop()
        self.schedule = AutomationSchedule()
        self._pending: list[PendingAction] = []
        self._control_log: list[ControlLogEntry] = []

    @classmethod
    def from_settings(cls, team_ids: Iterable[str], settings: RuntimeSettings) -> "WorldController":
        return cls(
            team_ids,
            daily_limit=settings.daily_budget_limit,
            monthly_limit=settings.monthly_budget_limit,
            auto_stop_on_limit=settings.auto_stop_on_limit,
        )

    def _log(self, action: str, **details: Any) -> None:
        self._control_log.append(ControlLogEntry(ts=self._clock(), action=action, details=details))
        if len(self._control_log) > CONTROL_LOG_CAP:
            del self._control_log[:-CONTROL_LOG_KEEP]
        logger.info("world control: %s %s", action, details)

    # world

    def pause_world(self, reason: str = "Manual pause", paused_by: str = "owner") -> ControlResult:
        with self._lock:
            self.global_paused = True
            self.paused_ts = self._clock()
            self.paused_by = paused_by
            self.pause_reason = reason
            self.world_status = "paused"
            for control in self.team_controls.values():
                control.paused = True
                control.paused_ts = self.paused_ts
                control.paused_reason = f"World paused: {reason}"
            self._log("pause_world", reason=reason, paused_by=paused_by)
            return ControlResult(True, "World paused. All teams stopped.")

    def resume_world(self, resumed_by: str = "owner", target_status: str = "manual") -> ControlResult:
        with self._lock:
            if self.emergency.triggered:
                return ControlResult(
                    False, "Cannot resume: emergency stop is active. Reset the emergency stop first."
                )
            if target_status not in WORLD_STATUSES or target_status == "paused":
                return ControlResult(False, f"Invalid target status: {target_status}")
            self.global_paused = False
            self.paused_ts = None
            self.paused_by = None
            self.pause_reason = None
            self.world_status = target_status
            for control in self.team_controls.values():
                control.paused = False
                control.paused_ts = None
                control.paused_reason = None
            self._log("resume_world", resumed_by=resumed_by, target_status=target_status)
            return ControlResult(True, f"World resumed in {target_status} mode.")

    def set_world_status(self, status: str, changed_by: str = "owner") -> ControlResult:
        with self._lock:
            if status not in WORLD_STATUSES:
                return ControlResult(
                    False, f"Invalid world status. Must be one of: {', '.join(WORLD_STATUSES)}"
                )
            if self.emergency.triggered and status != "paused":
                return ControlResult(False, "Cannot change world status while emergency stop is active.")
            previous = self.world_status
            self.world_status = status
            if status == "paused":
                self.global_paused = True
                self.paused_ts = self._clock()
                self.paused_by = changed_by
            else:
                self.global_paused = False
                self.paused_ts = None
                self.paused_by = None
                self.pause_reason = None
            self._log("set_world_status", previous=previous, status=status, changed_by=changed_by)
            return ControlResult(True, f"World status changed from {previous} to {status}.")

    # teams

    def pause_team(self, team_id: str, reason: str = "Manual pause", paused_by: str = "owner") -> ControlResult:
        with self._lock:
            control = self.team_controls.get(team_id)
            if control is None:
                return ControlResult(False, f"Unknown team: {team_id}")
            control.paused = True
            control.paused_ts = self._clock()
            control.paused_reason = reason
            self._log("pause_team", team_id=team_id, reason=reason, paused_by=paused_by)
            return ControlResult(True, f"Team {team_id} paused.")

    def resume_team(self, team_id: str, resumed_by: str = "owner") -> ControlResult:
        with self._lock:
            control = self.team_controls.get(team_id)
            if control is None:
                return ControlResult(False, f"Unknown team: {team_id}")
            if self.global_paused:
                return ControlResult(False, "Cannot resume team while the world is paused.")
            control.paused = False
            control.paused_ts = None
            control.paused_reason = None
            self._log("resume_team", team_id=team_id, resumed_by=resumed_by)
            return ControlResult(True, f"Team {team_id} resumed.")

    def set_team_automation_level(
        self,
        team_id: str,
        level: str,
        allowed_actions: Iterable[str] | None = None,
        changed_by: str = "owner",
    ) -> ControlResult:
        with self._lock:
            control = self.team_controls.get(team_id)
            if control is None:
                return ControlResult(False, f"Unknown team: {team_id}")
            if level not in AUTOMATION_LEVELS:
                return ControlResult(
                    False,
                    f"Invalid automation level. Must be one of: {', '.join(AUTOMATION_LEVELS)}",
                )
            control.automation_level = level
            if allowed_actions is not None:
                control.allowed_actions = _filter_actions(allowed_actions)
            self._log(
                "set_team_automation",
                team_id=team_id,
                level=level,
                allowed_actions=list(control.allowed_actions),
                changed_by=changed_by,
            )
            return ControlResult(
                True,
                f"Team {team_id} automation set to {level}.",
                {"allowed_actions": list(control.allowed_actions)},
            )

    # actions

    def trigger_team_action(
        self,
        team_id: str,
        action_type: str,
        parameters: dict[str, Any] | None = None,
        triggered_by: str = "owner",
    ) -> ControlResult:
        with self._lock:
            control = self.team_controls.get(team_id)
            if control is None:
                return ControlResult(False, f"Unknown team: {team_id}")
            if action_type not in ACTION_COSTS:
                return ControlResult(
                    False, f"Invalid action type. Must be one of: {', '.join(ACTION_TYPES)}"
                )
            if self.emergency.triggered:
                return ControlResult(False, "Emergency stop is active.", {"code": "EMERGENCY_STOP"})
            if self.global_paused:
                return ControlResult(False, "World is paused.", {"code": "WORLD_PAUSED"})
            if control.paused:
                return ControlResult(False, f"Team {team_id} is paused.", {"code": "TEAM_PAUSED"})
            credit = self._credit_status()
            if not credit.can_proceed:
                return ControlResult(False, credit.message, {"code": "CREDIT_LIMIT"})
            action = {
                "id": new_id("action"),
                "team_id": team_id,
                "action_type": action_type,
                "parameters": dict(parameters or {}),
                "triggered_ts": self._clock(),
                "triggered_by": triggered_by,
                "status": "triggered",
                "estimated_cost": ACTION_COSTS.get(action_type, DEFAULT_ACTION_COST),
            }
            self._log("trigger_action", team_id=team_id, action_type=action_type, triggered_by=triggered_by)
            return ControlResult(True, f"Action {action_type} triggered for {team_id}.", {"action": action})

    def queue_action(
        self,
        team_id: str,
        action_type: str,
        parameters: dict[str, Any] | None = None,
        *,
        requires_approval: bool = True,
        requested_by: str = "system",
    ) -> ControlResult:
        with self._lock:
            if team_id not in self.team_controls:
                return ControlResult(False, f"Unknown team: {team_id}")
            if action_type not in ACTION_COSTS:
                return ControlResult(
                    False, f"Invalid action type. Must be one of: {', '.join(ACTION_TYPES)}"
                )
            if len(self._pending) >= PENDING_ACTION_CAP:
                return ControlResult(False, "Pending action queue is full.")
            action = PendingAction(
                id=new_id("pending"),
                team_id=team_id,
                action_type=action_type,
                parameters=dict(parameters or {}),
                requested_by=requested_by,
                requested_ts=self._clock(),
                status="pending_approval" if requires_approval else "queued",
                estimated_cost=ACTION_COSTS.get(action_type, DEFAULT_ACTION_COST),
            )
            self._pending.append(action)
            self._log("queue_action", action_id=action.id, team_id=team_id, action_type=action_type)
            return ControlResult(True, "Action queued.", {"action": asdict(action)})

    def _take_pending(self, action_id: str) -> PendingAction | None:
        for index, action in enumerate(self._pending):
            if action.id == action_id:
                return self._pending.pop(index)
        return None

    def approve_action(self, action_id: str, approved_by: str = "owner") -> ControlResult:
        with self._lock:
            action = self._take_pending(action_id)
            if action is None:
                return ControlResult(False, f"Pending action not found: {action_id}")
            action.status = "approved"
            action.resolved_by = approved_by
            self._log("approve_action", action_id=action_id, approved_by=approved_by)
            result = self.trigger_team_action(
                action.team_id, action.action_type, action.parameters, triggered_by=approved_by
            )
            result.data["pending_action"] = asdict(action)
            return result

    def reject_action(
        self, action_id: str, rejected_by: str = "owner", reason: str | None = None
    ) -> ControlResult:
        with self._lock:
            action = self._take_pending(action_id)
            if action is None:
                return ControlResult(False, f"Pending action not found: {action_id}")
            action.status = "rejected"
            action.resolved_by = rejected_by
            action.resolution_reason = reason
            self._log("reject_action", action_id=action_id, rejected_by=rejected_by, reason=reason)
            return ControlResult(True, "Action rejected.", {"action": asdict(action)})

    def pending_actions(self) -> dict[str, Any]:
        with self._lock:
            actions = [asdict(action) for action in self._pending]
        return {
            "count": len(actions),
            "actions": actions,
            "total_estimated_cost": round(sum(item["estimated_cost"] for item in actions), 4),
        }

    # credit protection

    def set_credit_limits(
        self,
        daily_limit: float | None = None,
        monthly_limit: float | None = None,
        auto_stop_on_limit: bool | None = None,
    ) -> ControlResult:
        with self._lock:
            for name, value in (("daily_limit", daily_limit), ("monthly_limit", monthly_limit)):
                if value is not None and value <= 0:
                    return ControlResult(False, f"{name} must be positive")
            if daily_limit is not None:
                self.credit.daily_limit = float(daily_limit)
            if monthly_limit is not None:
                self.credit.monthly_limit = float(monthly_limit)
            if auto_stop_on_limit is not None:
                self.credit.auto_stop_on_limit = auto_stop_on_limit
            self._log(
                "set_credit_limits",
                daily_limit=self.credit.daily_limit,
                monthly_limit=self.credit.monthly_limit,
                auto_stop_on_limit=self.credit.auto_stop_on_limit,
            )
            return ControlResult(True, "Credit limits updated.", {"credit": asdict(self._credit_status())})

    def _credit_status(self) -> CreditStatus:
        credit = self.credit
        daily_ratio = credit.daily_spent / credit.daily_limit
        monthly_ratio = credit.monthly_spent / credit.monthly_limit
        ratio = max(daily_ratio, monthly_ratio)
        level = "ok"
        for name, threshold in CREDIT_THRESHOLDS:
            if ratio >= threshold:
                level = name
                break
        window = "daily" if daily_ratio >= monthly_ratio else "monthly"
        percent = round(ratio * 100, 1)
        if level == "hard_stop":
            message = f"Credit limit reached ({window} usage {percent}%). All actions blocked."
        elif level == "ok":
            message = "Credit usage within limits."
        else:
            message = f"Credit usage at {percent}% of {window} limit ({level})."
        return CreditStatus(
            status=level,
            can_proceed=level != "hard_stop",
            message=message,
            daily=SpendWindow(
                spent=round(credit.daily_spent, 6),
                limit=credit.daily_limit,
                remaining=round(max(0.0, credit.daily_limit - credit.daily_spent), 6),
                usage_percent=round(daily_ratio * 100, 1),
            ),
            monthly=SpendWindow(
                spent=round(credit.monthly_spent, 6),
                limit=credit.monthly_limit,
                remaining=round(max(0.0, credit.monthly_limit - credit.monthly_spent), 6),
                usage_percent=round(monthly_ratio * 100, 1),
            ),
        )

    def check_credit_limits(self) -> CreditStatus:
        with self._lock:
            return self._credit_status()

    def record_spend(self, amount: float, source: str | None = None) -> CreditStatus:
        if amount < 0:
            raise ValueError("spend amount must be non-negative")
        with self._lock:
            self.credit.daily_spent += amount
            self.credit.monthly_spent += amount
            status = self._credit_status()
            if status.status in {"critical", "hard_stop"}:
                logger.warning("credit protection %s after spend from %s: %s", status.status, source, status.message)
            if status.status == "hard_stop" and self.credit.auto_stop_on_limit:
                reason = f"Credit limit reached: {status.message}"
                if not self.global_paused:
                    self.pause_world(reason, "credit_protection")
                else:
                    self._pause_running_teams(reason)
            return status

    def _pause_running_teams(self, reason: str) -> None:
        # a status-only pause leaves teams running; the hard stop must still halt them
        paused = []
        for team_id, control in self.team_controls.items():
            if not control.paused:
                control.paused = True
                control.paused_ts = self._clock()
                control.paused_reason = reason
                paused.append(team_id)
        if paused:
            self._log("credit_pause_teams", teams=paused, reason=reason)

    def reset_daily_spend(self, reset_by: str = "owner") -> ControlResult:
        with self._lock:
            self.credit.daily_spent = 0.0
            self.credit.daily_reset_ts = self._clock()
            self._log("reset_daily_spend", reset_by=reset_by)
            return ControlResult(True, "Daily spend reset.")

    def reset_monthly_spend(self, reset_by: str = "owner") -> ControlResult:
        with self._lock:
            self.credit.monthly_spent = 0.0
            self.credit.monthly_reset_ts = self._clock()
            self._log("reset_monthly_spend", reset_by=reset_by)
            return ControlResult(True, "Monthly spend reset.")

    # emergency stop

    def trigger_emergency_stop(self, reason: str, triggered_by: str = "owner") -> ControlResult:
        with self._lock:
            self.emergency = EmergencyStop(
                triggered=True,
                triggered_ts=self._clock(),
                triggered_by=triggered_by,
                reason=reason,
                requires_manual_reset=True,
            )
            self.pause_world(f"EMERGENCY STOP: {reason}", triggered_by)
            self._log("emergency_stop", reason=reason, triggered_by=triggered_by)
            logger.warning("emergency stop triggered by %s: %s", triggered_by, reason)
            return ControlResult(
                True,
                "Emergency stop activated. All operations halted. Manual reset required.",
            )

    def reset_emergency_stop(self, reset_by: str, confirmation: str) -> ControlResult:
        with self._lock:
            if confirmation != EMERGENCY_RESET_TOKEN:
                return ControlResult(False, f"Invalid confirmation code. Send {EMERGENCY_RESET_TOKEN} to reset.")
            if not self.emergency.triggered:
                return ControlResult(False, "Emergency stop is not active.")
            self.emergency = EmergencyStop()
            self._log("emergency_reset", reset_by=reset_by)
            return ControlResult(
                True, "Emergency stop cleared. World remains paused; resume it explicitly."
            )

    # automation schedule

    def set_automation_schedule(
        self,
        enabled: bool,
        windows: Iterable[dict[str, Any]] | None = None,
        timezone_name: str | None = None,
    ) -> ControlResult:
        with self._lock:
            if timezone_name is not None:
                try:
                    ZoneInfo(timezone_name)
                except (ZoneInfoNotFoundError, ValueError):
                    return ControlResult(False, f"Unknown timezone: {timezone_name}")
            parsed: list[AutomationWindow] | None = None
            if windows is not None:
                parsed = []
                try:
                    for item in windows:
                        parsed.append(self._build_window(**item))
                except (TypeError, ValueError) as exc:
                    return ControlResult(False, f"Invalid automation window: {exc}")
            self.schedule.enabled = enabled
            if timezone_name is not None:
                self.schedule.timezone = timezone_name
            if parsed is not None:
                self.schedule.windows = parsed
            self._log(
                "set_schedule",
                enabled=enabled,
                timezone=self.schedule.timezone,
                windows=len(self.schedule.windows),
            )
            return ControlResult(True, "Automation schedule updated.", {"schedule": asdict(self.schedule)})

    def _build_window(
        self,
        start: str,
        end: str,
        teams: Iterable[str] | None = None,
        actions: Iterable[str] | None = None,
        id: str | None = None,
    ) -> AutomationWindow:
        return AutomationWindow(
            id=id or new_id("window"),
            start=_validate_hhmm(start, "start"),
            end=_validate_hhmm(end, "end"),
            teams=list(teams) if teams is not None else None,
            actions=_filter_actions(actions) if actions is not None else None,
        )

    def add_automation_window(
        self,
        start: str,
        end: str,
        teams: Iterable[str] | None = None,
        actions: Iterable[str] | None = None,
    ) -> ControlResult:
        with self._lock:
            try:
                window = self._build_window(start, end, teams, actions)
            except ValueError as exc:
                return ControlResult(False, str(exc))
            self.schedule.windows.append(window)
            self._log("add_window", window_id=window.id, start=start, end=end)
            return ControlResult(True, "Automation window added.", {"window": asdict(window)})

    def remove_automation_window(self, window_id: str) -> ControlResult:
        with self._lock:
            remaining = [window for window in self.schedule.windows if window.id != window_id]
            if len(remaining) == len(self.schedule.windows):
                return ControlResult(False, f"Automation window not found: {window_id}")
            self.schedule.windows = remaining
            self._log("remove_window", window_id=window_id)
            return ControlResult(True, "Automation window removed.")

    def is_within_automation_window(self, team_id: str, action_type: str) -> bool:
        with self._lock:
            if not self.schedule.enabled:
                return False
            local = self._now().astimezone(ZoneInfo(self.schedule.timezone))
            hhmm = local.strftime("%H:%M")
            return any(window.covers(hhmm, team_id, action_type) for window in self.schedule.windows)

    # permission predicate

    def check_halt(self, team_id: str) -> Permission | None:
        """Return a denial when a running loop must stop, else None."""
        with self._lock:
            if self.emergency.triggered:
                return Permission(False, f"Emergency stop active: {self.emergency.reason}", "EMERGENCY_STOP")
            if self.global_paused:
                return Permission(False, f"World paused: {self.pause_reason or 'paused'}", "WORLD_PAUSED")
            control = self.team_controls.get(team_id)
            if control is not None and control.paused:
                return Permission(False, f"Team paused: {control.paused_reason or 'paused'}", "TEAM_PAUSED")
            credit = self._credit_status()
            if not credit.can_proceed:
                return Permission(False, credit.message, "CREDIT_LIMIT")
            return None

    def can_execute_action(self, team_id: str, action_type: str) -> Permission:
        with self._lock:
            denial = self.check_halt(team_id)
            if denial is not None:
                return denial
            control = self.team_controls.get(team_id)
            if control is None:
                return Permission(False, f"Unknown team: {team_id}", "UNKNOWN_TEAM")
            if self.world_status == "paused":
                return Permission(False, "World is paused", "WORLD_PAUSED")
            if self.world_status == "manual":
                return Permission(
                    False, "Manual mode: owner must trigger actions", "REQUIRES_TRIGGER", True
                )
            if self.world_status == "semi_auto":
                if (
                    self.is_within_automation_window(team_id, action_type)
                    and action_type in control.allowed_actions
                ):
                    return Permission(True, "Within automation window and action allowed")
                return Permission(
                    False, "Semi-auto mode: action requires approval", "REQUIRES_APPROVAL", True
                )
            if control.automation_level == "stopped":
                return Permission(False, "Team automation is stopped", "TEAM_STOPPED")
            if control.automation_level == "manual":
                return Permission(
                    False, "Team is in manual mode: owner must trigger actions", "REQUIRES_TRIGGER", True
                )
            return Permission(True, f"Autonomous mode ({control.automation_level})")

    # reporting

    def status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "world_status": self.world_status,
                "global_paused": self.global_paused,
                "paused_ts": self.paused_ts,
                "paused_by": self.paused_by,
                "pause_reason": self.pause_reason,
                "emergency_stop": asdict(self.emergency),
                "credit": asdict(self._credit_status()),
                "credit_limits": {
                    "daily_limit": self.credit.daily_limit,
                    "monthly_limit": self.credit.monthly_limit,
                    "auto_stop_on_limit": self.credit.auto_stop_on_limit,
                },
                "teams": {team_id: asdict(control) for team_id, control in self.team_controls.items()},
                "pending_actions": len(self._pending),
                "schedule": asdict(self.schedule),
            }

    def team_status(self, team_id: str) -> dict[str, Any] | None:
        with self._lock:
            control = self.team_controls.get(team_id)
            if control is None:
                return None
            permission = self.can_execute_action(team_id, "execute")
            return {
                "team_id": team_id,
                **asdict(control),
                "world_status": self.world_status,
                "can_execute": asdict(permission),
            }

    def control_log(self, limit: int = 50) -> list[dict[str, Any]]:
        with self._lock:
            entries = self._control_log[-limit:] if limit > 0 else []
            return [asdict(entry) for entry in entries]
