from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any

import httpx

from app.ai.schema import AgentResponse
from app.core.config import AGENT_API_URL, AGENT_RETRIES, AGENT_TIMEOUT_SECONDS
from app.core.logging_setup import mask_personal_data

logger = logging.getLogger(__name__)

FALLBACK_MESSAGE = "Désolé, le service a un souci technique pour le moment. Merci de réessayer plus tard 🙂"
TIMEOUT_MESSAGE = "Le service met trop de temps à répondre. Merci de réessayer dans quelques instants 🙂"
UNAVAILABLE_MESSAGE = "Le service est temporairement indisponible. Merci de réessayer dans 1-2 minutes 🙂"
REJECTED_MESSAGE = "Désolé, je n'ai pas pu traiter votre demande pour le moment."


class AgentUnavailableError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None, timed_out: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.timed_out = timed_out


def _parse_json_text(text: str) -> Any | None:
    text = (text or "").strip()
    if not text or text[0] not in "{[":
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def extract_json_from_text(text: str) -> Any | None:
    """First JSON object or array found in ``text`` ("Voici: {...}")."""
    direct = _parse_json_text(text)
    if direct is not None:
        return direct
    for opening, closing in (("{", "}"), ("[", "]")):
        start, end = text.find(opening), text.rfind(closing)
        if start != -1 and end > start:
            parsed = _parse_json_text(text[start : end + 1])
            if parsed is not None:
                return parsed
    return None


def unwrap_agent_payload(raw: Any) -> dict[str, Any]:
    """Workflow engines wrap the answer in many ways; find the {message, actions} object."""
    if isinstance(raw, list):
        if not raw:
            return {}
        first = raw[0]
        if isinstance(first, dict) and isinstance(first.get("json"), dict):
            return unwrap_agent_payload(first["json"])
        return unwrap_agent_payload(first)

    if isinstance(raw, str):
        parsed = extract_json_from_text(raw)
        if parsed is None:
            return {"message": raw}
        return unwrap_agent_payload(parsed)

    if not isinstance(raw, dict):
        return {"message": "" if raw is None else str(raw)}

    if "actions" in raw:
        return raw
    for key in ("json", "data", "output", "result", "response"):
        inner = raw.get(key)
        if isinstance(inner, dict):
            return unwrap_agent_payload(inner)
        if key == "output" and isinstance(inner, str) and "message" not in raw:
            return unwrap_agent_payload(inner)
    return raw


def _should_retry(exc: Exception) -> bool:
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(exc, AgentUnavailableError):
        return exc.status_code is not None and exc.status_code >= 500
    return False


def _backoff_seconds(attempt: int, base: float) -> float:
    # base, 2*base, 4*base... capped at 8s
    return min(base * (2 ** max(0, attempt - 1)), 8.0)


class HttpAgentProvider:
    """Calls the agent workflow webhook with ``{request_id, message: agent_input}``."""

    name = "http"

    def __init__(
        self,
        url: str = AGENT_API_URL,
        *,
        timeout: float = AGENT_TIMEOUT_SECONDS,
        retries: int = AGENT_RETRIES,
        backoff_base: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.retries = max(0, retries)
        self.backoff_base = backoff_base
        self.transport = transport

    async def _post(self, client: httpx.AsyncClient, payload: dict[str, Any]) -> Any:
        response = await client.post(self.url, json=payload)
        if response.status_code >= 400:
            raise AgentUnavailableError(
                f"agent returned {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError:
            return response.text

    async def generate(self, agent_input: dict[str, Any]) -> AgentResponse:
        request_id = uuid.uuid4().hex[:16]
        payload = {"request_id": request_id, "message": agent_input}
        attempts = self.retries + 1
        last_error: Exception | None = None

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for attempt in range(1, attempts + 1):
                try:
                    logger.info("agent call request_id=%s attempt=%s/%s", request_id, attempt, attempts)
                    raw = await self._post(client, payload)
                except (httpx.HTTPError, AgentUnavailableError) as exc:
                    last_error = exc
                    logger.warning(
                        "agent call failed request_id=%s attempt=%s/%s error=%s",
                        request_id,
                        attempt,
                        attempts,
                        exc,
                    )
                    if attempt < attempts and _should_retry(exc):
                        await asyncio.sleep(_backoff_seconds(attempt, self.backoff_base))
                        continue
                    break

                response = AgentResponse.from_payload(unwrap_agent_payload(raw))
                logger.info(
                    "agent answered request_id=%s actions=%s message=%s",
                    request_id,
                    ",".join(action.type for action in response.actions) or "-",
                    mask_personal_data(response.message),
                )
                return response

        return AgentResponse(message=fallback_message_for(last_error))


def fallback_message_for(error: Exception | None) -> str:
    if isinstance(error, httpx.TimeoutException):
        return TIMEOUT_MESSAGE
    if isinstance(error, AgentUnavailableError):
        if error.status_code == 503:
            return UNAVAILABLE_MESSAGE
        if error.status_code is not None and error.status_code < 500:
            return REJECTED_MESSAGE
    return FALLBACK_MESSAGE
