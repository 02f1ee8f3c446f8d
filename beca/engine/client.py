"""Async HTTP client for the BECA assistant backend.

The backend is a Gradio app: every call is a POST to ``/api/predict``
with a positional ``data`` array. Transport failures never raise out of
``send_message``; they come back as ``BackendResponse(success=False)``
so callers can surface them in-band.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

import aiohttp

logger = logging.getLogger(__name__)

CHAT_FN_INDEX = 0


@dataclass
class BackendContext:
    code: str | None = None
    language: str | None = None
    file_path: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class BackendResponse:
    success: bool
    response: str = ""
    tools_used: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


class BecaClient:
    """Thin wrapper over one shared ``aiohttp.ClientSession``."""

    def __init__(
        self,
        api_url: str = "http://localhost:7860",
        timeout_seconds: float = 60.0,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: aiohttp.ClientSession | None = None

    @property
    def api_url(self) -> str:
        return self._api_url

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={"Content-Type": "application/json"},
            )
        return self._session

    async def update_api_url(self, api_url: str) -> None:
        """Point the client at a new backend, dropping the old session."""
        logger.info("Backend URL changed old=%s new=%s", self._api_url, api_url)
        await self.close()
        self._api_url = api_url.rstrip("/")

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def test_connection(self) -> bool:
        try:
            async with self._get_session().get(f"{self._api_url}/") as resp:
                return resp.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("Backend connection test failed url=%s: %s", self._api_url, exc)
            return False

    async def send_message(
        self,
        message: str,
        context: BackendContext | None = None,
    ) -> BackendResponse:
        """Send a prompt with optional code context and return the reply."""
        context = context or BackendContext()
        payload = {
            "fn_index": CHAT_FN_INDEX,
            "data": [
                message,
                context.file_path or "",
                context.code or "",
                context.language or "",
                json.dumps(context.metadata or {}),
            ],
        }
        try:
            async with self._get_session().post(
                f"{self._api_url}/api/predict", json=payload,
            ) as resp:
                resp.raise_for_status()
                body = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            reason = str(exc) or type(exc).__name__
            logger.error("Backend API error url=%s: %s", self._api_url, reason)
            return BackendResponse(
                success=False,
                error=reason,
                response=f"Error communicating with BECA: {reason}",
            )
        return _parse_predict_body(body)

    # ── Prompt helpers ──

    async def get_diagnostics(
        self, code: str, language: str, file_path: str,
    ) -> BackendResponse:
        message = (
            f"Please analyze this {language} code for potential issues, "
            f"bugs, and code smells:\n\n{code}"
        )
        return await self.send_message(
            message, BackendContext(code=code, language=language, file_path=file_path),
        )

    async def get_hover_info(
        self, code: str, symbol: str, language: str,
    ) -> BackendResponse:
        message = (
            f"Please provide detailed information about the symbol '{symbol}' "
            f"in this {language} code:\n\n{code}"
        )
        return await self.send_message(
            message,
            BackendContext(code=code, language=language, metadata={"symbol": symbol}),
        )

    async def get_suggestions(
        self, code: str, language: str, cursor_position: int,
    ) -> BackendResponse:
        message = (
            f"Please provide coding suggestions for this {language} code "
            f"at cursor position {cursor_position}:\n\n{code}"
        )
        return await self.send_message(
            message,
            BackendContext(
                code=code, language=language,
                metadata={"cursorPosition": cursor_position},
            ),
        )

    async def review_file(
        self, file_path: str, content: str, language: str,
    ) -> BackendResponse:
        message = (
            f"Please review this {language} file and provide feedback on code "
            f"quality, best practices, and potential improvements:\n\n"
            f"File: {file_path}\n\n{content}"
        )
        return await self.send_message(
            message,
            BackendContext(code=content, language=language, file_path=file_path),
        )


def _parse_predict_body(body: Any) -> BackendResponse:
    data = body.get("data") if isinstance(body, dict) else None
    if not isinstance(data, list) or not data:
        logger.error("Backend returned unexpected body: %.200r", body)
        return BackendResponse(
            success=False,
            error="Malformed backend response",
            response="Error communicating with BECA: Malformed backend response",
        )
    response = data[0] if isinstance(data[0], str) else str(data[0] or "")
    tools = data[1] if len(data) > 1 and isinstance(data[1], list) else []
    metadata = data[2] if len(data) > 2 and isinstance(data[2], dict) else {}
    return BackendResponse(
        success=True,
        response=response,
        tools_used=[str(t) for t in tools],
        metadata=metadata,
    )
