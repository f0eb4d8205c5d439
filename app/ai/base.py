from __future__ import annotations

from typing import Any, Protocol

from app.ai.schema import AgentResponse


class AgentProvider(Protocol):
    name: str

    async def generate(self, agent_input: dict[str, Any]) -> AgentResponse:
        ...
