from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from crewloop.backends.registry import Backend
from crewloop.core.tracing import read_events
from crewloop.errors import ActionNotPermittedError, ConfigurationError, ResumeError
from crewloop.runtime import controller
from crewloop.runtime.checkpoints import checkpoint_to_payload
from crewloop.world.controller import ControlResult


class PauseRequest(BaseModel):
    reason: str = "Manual pause"
    by: str = "owner"


class ResumeWorldRequest(BaseModel):
    by: str = "owner"
    target_status: str = "manual"


class WorldStatusRequest(BaseModel):
    status: str
    by: str = "owner"


class AutomationRequest(BaseModel):
    level: str
    allowed_actions: list[str] | None = None
    by: str = "owner"


class TriggerRequest(BaseModel):
    action_type: str
    parameters: dict[str, Any] | None = None
    by: str = "owner"


class QueueActionRequest(BaseModel):
    team_id: str
    action_type: str
    parameters: dict[str, Any] | None = None
    requires_approval: bool = True
    by: str = "system"


class RejectRequest(BaseModel):
    reason: str | None = None
    by: str = "owner"


class CreditLimitsRequest(BaseModel):
    daily_limit: float | None = None
    monthly_limit: float | None = None
    auto_stop_on_limit: bool | None = None


class EmergencyStopRequest(BaseModel):
    reason: str
    by: str = "owner"


class EmergencyResetRequest(BaseModel):
    confirmation: str
    by: str = "owner"


class WindowRequest(BaseModel):
    start: str
    end: str
    teams: list[str] | None = None
    actions: list[str] | None = None


class ScheduleRequest(BaseModel):
    enabled: bool
    timezone: str | None = None
    windows: list[WindowRequest] | None = None


class RunTeamRequest(BaseModel):
    task: str
    trigger: bool = False
    max_iterations: int | None = None
    provider: str | None = None


class ResumeRequest(BaseModel):
    trigger: bool = False
    max_iterations: int | None = None
    provider: str | None = None


class OrchestrateRequest(BaseModel):
    message: str
    provider: str | None = None


class CleanupRequest(BaseModel):
    max_age_hours: float | None = None


def _control(result: ControlResult) -> dict[str, Any]:
    if not result.success:
        raise HTTPException(status_code=400, detail=result.message)
    return {"success": True, "message": result.message, **result.data}


def create_app(
    environment: controller.Environment | None = None,
    *,
    backend: Backend | None = None,
) -> FastAPI:
    env = environment or controller.build_environment()
    world = env.world

    app = FastAPI(title="crewloop admin")
    app.state.environment = env

    @app.middleware("http")
    async def _auth_middleware(request: Request, call_next):
        token = env.settings.admin_token
        if token and request.headers.get("X-Admin-Token") != token:
            return JSONResponse(status_code=401, content={"detail": "Invalid admin token"})
        return await call_next(request)

    # world

    @app.get("/api/world")
    async def get_world() -> dict[str, Any]:
        return world.status()

    @app.post("/api/world/pause")
    async def pause_world(payload: PauseRequest) -> dict[str, Any]:
        return _control(world.pause_world(payload.reason, paused_by=payload.by))

    @app.post("/api/world/resume")
    async def resume_world(payload: ResumeWorldRequest) -> dict[str, Any]:
        return _control(world.resume_world(payload.by, target_status=payload.target_status))

    @app.post("/api/world/status")
    async def set_world_status(payload: WorldStatusRequest) -> dict[str, Any]:
        return _control(world.set_world_status(payload.status, changed_by=payload.by))

    # teams

    @app.get("/api/teams")
    async def list_teams() -> dict[str, Any]:
        teams = []
        for team in env.state.teams():
            teams.append(
                {
                    **team.summary(),
                    "runtime": asdict(env.state.team_runtime(team.id)),
                    "control": world.team_status(team.id),
                }
            )
        return {"teams": teams}

    @app.get("/api/teams/{team_id}")
    async def get_team(team_id: str) -> dict[str, Any]:
        status = world.team_status(team_id)
        if status is None:
            raise HTTPException(status_code=404, detail=f"Unknown team: {team_id}")
        return status

    @app.post("/api/teams/{team_id}/pause")
    async def pause_team(team_id: str, payload: PauseRequest) -> dict[str, Any]:
        return _control(world.pause_team(team_id, payload.reason, paused_by=payload.by))

    @app.post("/api/teams/{team_id}/resume")
    async def resume_team(team_id: str) -> dict[str, Any]:
        return _control(world.resume_team(team_id))

    @app.post("/api/teams/{team_id}/automation")
    async def set_automation(team_id: str, payload: AutomationRequest) -> dict[str, Any]:
        return _control(
            world.set_team_automation_level(
                team_id, payload.level, payload.allowed_actions, changed_by=payload.by
            )
        )

    @app.post("/api/teams/{team_id}/trigger")
    async def trigger(team_id: str, payload: TriggerRequest) -> dict[str, Any]:
        return _control(
            world.trigger_team_action(
                team_id, payload.action_type, payload.parameters, triggered_by=payload.by
            )
        )

    # blocking model calls: plain def so FastAPI runs them in its threadpool
    @app.post("/api/teams/{team_id}/run")
    def run_team(team_id: str, payload: RunTeamRequest) -> dict[str, Any]:
        if env.state.team(team_id) is None:
            raise HTTPException(status_code=404, detail=f"Unknown team: {team_id}")
        try:
            result = controller.run_team(
                env,
                team_id,
                payload.task,
                backend,
                provider=payload.provider,
                trigger=payload.trigger,
                max_iterations=payload.max_iterations,
            )
        except ActionNotPermittedError as exc:
            raise HTTPException(status_code=403, detail={"message": str(exc), "code": exc.code}) from exc
        except ConfigurationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return result.to_dict()

    @app.post("/api/orchestrate")
    def orchestrate(payload: OrchestrateRequest) -> dict[str, Any]:
        try:
            result = controller.orchestrate(env, payload.message, backend, provider=payload.provider)
        except ActionNotPermittedError as exc:
            raise HTTPException(status_code=403, detail={"message": str(exc), "code": exc.code}) from exc
        except ConfigurationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return result.to_dict()

    # credits

    @app.get("/api/credits")
    async def get_credits() -> dict[str, Any]:
        return asdict(world.check_credit_limits())

    @app.post("/api/credits/limits")
    async def set_limits(payload: CreditLimitsRequest) -> dict[str, Any]:
        return _control(
            world.set_credit_limits(
                payload.daily_limit, payload.monthly_limit, payload.auto_stop_on_limit
            )
        )

    @app.post("/api/credits/reset/{window}")
    async def reset_spend(window: str) -> dict[str, Any]:
        if window == "daily":
            return _control(world.reset_daily_spend())
        if window == "monthly":
            return _control(world.reset_monthly_spend())
        raise HTTPException(status_code=400, detail="window must be 'daily' or 'monthly'")

    # emergency

    @app.post("/api/emergency/stop")
    async def emergency_stop(payload: EmergencyStopRequest) -> dict[str, Any]:
        return _control(world.trigger_emergency_stop(payload.reason, triggered_by=payload.by))

    @app.post("/api/emergency/reset")
    async def emergency_reset(payload: EmergencyResetRequest) -> dict[str, Any]:
        return _control(world.reset_emergency_stop(payload.by, payload.confirmation))

    # schedule

    @app.get("/api/schedule")
    async def get_schedule() -> dict[str, Any]:
        return world.status()["schedule"]

    @app.put("/api/schedule")
    async def set_schedule(payload: ScheduleRequest) -> dict[str, Any]:
        windows = None
        if payload.windows is not None:
            windows = [window.model_dump(exclude_none=True) for window in payload.windows]
        return _control(world.set_automation_schedule(payload.enabled, windows, payload.timezone))

    @app.post("/api/schedule/windows")
    async def add_window(payload: WindowRequest) -> dict[str, Any]:
        return _control(
            world.add_automation_window(payload.start, payload.end, payload.teams, payload.actions)
        )

    @app.delete("/api/schedule/windows/{window_id}")
    async def remove_window(window_id: str) -> dict[str, Any]:
        return _control(world.remove_automation_window(window_id))

    # action queue

    @app.get("/api/actions")
    async def list_actions() -> dict[str, Any]:
        return world.pending_actions()

    @app.post("/api/actions")
    async def queue_action(payload: QueueActionRequest) -> dict[str, Any]:
        return _control(
            world.queue_action(
                payload.team_id,
                payload.action_type,
                payload.parameters,
                requires_approval=payload.requires_approval,
                requested_by=payload.by,
            )
        )

    @app.post("/api/actions/{action_id}/approve")
    async def approve_action(action_id: str) -> dict[str, Any]:
        return _control(world.approve_action(action_id))

    @app.post("/api/actions/{action_id}/reject")
    async def reject_action(action_id: str, payload: RejectRequest) -> dict[str, Any]:
        return _control(world.reject_action(action_id, payload.by, payload.reason))

    @app.get("/api/control-log")
    async def control_log(limit: int = 50) -> dict[str, Any]:
        return {"entries": world.control_log(limit)}

    # checkpoints and traces

    @app.get("/api/checkpoints")
    async def list_checkpoints(team_id: str | None = None, resumable: bool = False) -> dict[str, Any]:
        if resumable:
            items = env.checkpoints.resumable_checkpoints(team_id)
        else:
            items = env.checkpoints.team_checkpoints(team_id)
        return {"checkpoints": items}

    @app.get("/api/checkpoints/{session_id}")
    async def get_checkpoint(session_id: str) -> dict[str, Any]:
        try:
            checkpoint = env.checkpoints.load(session_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if checkpoint is None:
            raise HTTPException(status_code=404, detail=f"Checkpoint not found: {session_id}")
        return checkpoint_to_payload(checkpoint)

    @app.delete("/api/checkpoints/{session_id}")
    async def delete_checkpoint(session_id: str) -> dict[str, Any]:
        try:
            deleted = env.checkpoints.delete(session_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        if not deleted:
            raise HTTPException(status_code=404, detail=f"Checkpoint not found: {session_id}")
        return {"deleted": session_id}

    @app.post("/api/checkpoints/{session_id}/resume")
    def resume_checkpoint(session_id: str, payload: ResumeRequest) -> dict[str, Any]:
        try:
            result = controller.resume_team(
                env,
                session_id,
                backend,
                provider=payload.provider,
                trigger=payload.trigger,
                max_iterations=payload.max_iterations,
            )
        except ResumeError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except ActionNotPermittedError as exc:
            raise HTTPException(status_code=403, detail={"message": str(exc), "code": exc.code}) from exc
        except ConfigurationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return result.to_dict()

    @app.post("/api/checkpoints/cleanup")
    async def cleanup(payload: CleanupRequest) -> dict[str, Any]:
        removed = env.checkpoints.cleanup_old(payload.max_age_hours)
        return {"removed": removed, "count": len(removed)}

    @app.get("/api/traces/{session_id}")
    async def get_trace(session_id: str) -> dict[str, Any]:
        path = env.settings.trace_dir / f"{session_id}.jsonl"
        if "/" in session_id or ".." in session_id or not path.exists():
            raise HTTPException(status_code=404, detail="Trace file not found")
        return {"session_id": session_id, "events": [asdict(event) for event in read_events(path)]}

    return app
