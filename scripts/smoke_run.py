from __future__ import annotations

from dataclasses import replace
from pathlib import Path

from crewloop.backends.fake import FakeBackend, tool_use
from crewloop.config import load_settings
from crewloop.core.types import ModelRequest, ModelResponse
from crewloop.runtime import controller


class SmokeBackend:
    def __init__(self) -> None:
        self.orchestrator = FakeBackend(
            responses=[
                tool_use("delegate_to_team", {"team_id": "developer", "task": "Write a README stub"}),
                tool_use("respond_to_user", {"message": "Developer wrote a README stub."}),
            ]
        )
        self.team = FakeBackend(
            responses=[
                tool_use("write_workspace_file", {"path": "README.md", "content": "# smoke\n"}),
                tool_use("signal_completion", {"summary": "README stub written"}),
            ]
        )

    def complete(self, request: ModelRequest) -> ModelResponse:
        if request.system.startswith("## Identity"):
            return self.orchestrator.complete(request)
        return self.team.complete(request)


def main() -> None:
    base_dir = Path("data") / "smoke"
    settings = replace(
        load_settings(),
        data_root=base_dir,
        checkpoint_dir=base_dir / "checkpoints",
        workspace_root=base_dir / "workspaces",
    )
    env = controller.build_environment(settings)

    result = controller.orchestrate(env, "Please add a README.", SmokeBackend())

    print("Final answer:")
    print(result.user_response)
    print(f"Delegations: {len(result.delegations)}  api_calls={result.usage.api_calls}")
    print(f"Workspace file: {settings.workspace_root / 'developer' / 'README.md'}")
    print(f"Traces: {settings.trace_dir}")


if __name__ == "__main__":
    main()
