"""HTTP client for OpenAI-compatible chat completion endpoints."""

from __future__ import annotations

import json
import logging
import textwrap
from typing import Any, Dict, List, Optional

import httpx

from .config import TranslatorConfig

logger = logging.getLogger(__name__)

_CHAT_COMPLETIONS_PATH = "/chat/completions"

OVERSIZED_CHUNK_HINT = (
    "If the status code is 400, the file exceeds the token limit without line breaks. "
    "Please break long lines into shorter paragraphs."
)
MODEL_ACCESS_HINT = "If the status code is 404, you do not have the right access to the model."

FAILURE_HINTS: dict[int, str] = {
    400: OVERSIZED_CHUNK_HINT,
    404: MODEL_ACCESS_HINT,
}


class RemoteCallError(RuntimeError):
    """Raised when the completion endpoint cannot produce a result."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def hints(self) -> List[str]:
        """Operator guidance, the hint matching ``status_code`` first."""

        matching = FAILURE_HINTS.get(self.status_code) if self.status_code is not None else None
        ordered = [matching] if matching else []
        ordered.extend(hint for hint in FAILURE_HINTS.values() if hint != matching)
        return ordered


class ChatCompletionClient:
    """Sends one system/user exchange per call and returns the reply text."""

    def __init__(
        self,
        config: TranslatorConfig,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=config.timeout)

    @property
    def endpoint(self) -> str:
        return self.config.base_url.rstrip("/") + _CHAT_COMPLETIONS_PATH

    async def __aenter__(self) -> "ChatCompletionClient":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def complete(self, system_prompt: str, user_text: str) -> str:
        payload = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_text},
            ],
            "top_p": self.config.top_p,
            "stream": self.config.stream,
        }
        if logger.isEnabledFor(logging.DEBUG):
            preview = textwrap.shorten(user_text.replace("\n", " "), width=120, placeholder="...")
            logger.debug(
                "Request model=%s stream=%s chars=%d preview='%s'",
                self.config.model,
                self.config.stream,
                len(user_text),
                preview,
            )
        try:
            if self.config.stream:
                return await self._request_streaming(payload)
            return await self._request(payload)
        except httpx.HTTPError as exc:
            raise RemoteCallError(f"Request to {self.endpoint} failed: {exc}") from exc

    async def _request(self, payload: Dict[str, Any]) -> str:
        response = await self._client.post(self.endpoint, json=payload, headers=self._headers())
        logger.debug("Response status=%s", response.status_code)
        if not response.is_success:
            raise _status_error(response.status_code, response.text)
        return _message_content(_parse_json(response.text))

    async def _request_streaming(self, payload: Dict[str, Any]) -> str:
        async with self._client.stream(
            "POST", self.endpoint, json=payload, headers=self._headers()
        ) as response:
            logger.debug("Response status=%s", response.status_code)
            if not response.is_success:
                body = await response.aread()
                raise _status_error(response.status_code, body.decode("utf-8", errors="replace"))

            content_type = response.headers.get("content-type", "")
            if content_type.startswith("application/json"):
                # Some compatible servers ignore the stream flag.
                body = await response.aread()
                return _message_content(_parse_json(body))

            parts: List[str] = []
            async for line in response.aiter_lines():
                line = line.strip()
                if not line.startswith("data:"):
                    continue
                data = line[len("data:"):].strip()
                if data == "[DONE]":
                    break
                parts.append(_delta_content(_parse_json(data)))
            return "".join(parts)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }


def _status_error(status_code: int, body: str) -> RemoteCallError:
    return RemoteCallError(
        f"Completion endpoint returned status {status_code}: {body}",
        status_code=status_code,
    )


def _parse_json(raw: str | bytes) -> Any:
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise RemoteCallError("Completion endpoint returned invalid JSON") from exc


def _first_choice(data: Any) -> Dict[str, Any]:
    if isinstance(data, dict) and "error" in data:
        raise RemoteCallError(f"Completion endpoint reported an error: {data['error']}")
    try:
        choice = data["choices"][0]
    except (KeyError, IndexError, TypeError) as exc:
        raise RemoteCallError("Unexpected response schema from completion endpoint") from exc
    if not isinstance(choice, dict):
        raise RemoteCallError("Unexpected response schema from completion endpoint")
    return choice


def _message_content(data: Any) -> str:
    message = _first_choice(data).get("message") or {}
    if not isinstance(message, dict):
        raise RemoteCallError("Unexpected response schema from completion endpoint")
    return _normalize_content(message.get("content"))


def _delta_content(event: Any) -> str:
    # Trailing usage events carry no choices.
    if isinstance(event, dict) and not event.get("choices") and "error" not in event:
        return ""
    delta = _first_choice(event).get("delta") or {}
    if not isinstance(delta, dict):
        raise RemoteCallError("Unexpected response schema from completion endpoint")
    return _normalize_content(delta.get("content"))


def _normalize_content(content: object) -> str:
    if content is None:
        return ""
    if isinstance(content, list):
        return "".join(
            str(item.get("text", "")) if isinstance(item, dict) else str(item)
            for item in content
        )
    return str(content)


__all__ = [
    "ChatCompletionClient",
    "FAILURE_HINTS",
    "RemoteCallError",
]
