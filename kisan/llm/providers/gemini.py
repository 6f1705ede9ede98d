from __future__ import annotations

from typing import Any

import httpx

from kisan.llm.types import CompletionRequest, CompletionResponse
from kisan.telemetry.logging import get_logger

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class GeminiProvider:
    def __init__(
        self,
        api_key: str | None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._api_key = api_key
        self._logger = get_logger(__name__)
        self.name = "gemini"

    @property
    def has_credential(self) -> bool:
        return bool(self._api_key)

    async def generate(self, request: CompletionRequest) -> CompletionResponse:
        payload = {
            "contents": [{"role": "user", "parts": [{"text": request.prompt_text}]}],
            "generationConfig": {"temperature": 0.7, "maxOutputTokens": request.max_output_tokens},
        }
        self._logger.info("gemini.generate", **request.to_trace())
        try:
            resp = await self._client.post(
                f"/models/{request.model}:generateContent",
                params={"key": self._api_key},
                json=payload,
            )
        except httpx.TransportError as exc:
            self._logger.warning("gemini.transport_error", error=str(exc))
            return CompletionResponse(text=None, error_message=str(exc) or exc.__class__.__name__)

        if resp.is_error:
            return CompletionResponse(
                text=None,
                error_code=resp.status_code,
                error_message=self._error_message(resp),
            )
        try:
            data = resp.json()
        except ValueError:
            self._logger.warning("gemini.invalid_body", status=resp.status_code)
            return CompletionResponse(text=None)
        return CompletionResponse(text=self._extract_text(data))

    @staticmethod
    def _extract_text(data: Any) -> str | None:
        if not isinstance(data, dict):
            return None
        candidates = data.get("candidates")
        if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
            return None
        content = candidates[0].get("content")
        if not isinstance(content, dict):
            return None
        parts = content.get("parts")
        if not isinstance(parts, list):
            return None
        text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
        return text or None

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        try:
            body = resp.json()
        except ValueError:
            return resp.text or resp.reason_phrase
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        return resp.reason_phrase

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["GeminiProvider", "DEFAULT_BASE_URL"]
