from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from crewloop.core.types import ToolResultBlock


@dataclass(slots=True)
class ToolResult:
    success: bool
    message: str
    data: Any | None = None

    @classmethod
    def ok(cls, message: str, data: Any | None = None) -> "ToolResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, message: str, data: Any | None = None) -> "ToolResult":
        return cls(success=False, message=message, data=data)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.data is not None:
            payload["data"] = self.data
        return payload

    def to_result_block(self, tool_use_id: str) -> ToolResultBlock:
        return ToolResultBlock(
            tool_use_id=tool_use_id,
            content=json.dumps(self.to_dict(), ensure_ascii=False, default=str),
        )
