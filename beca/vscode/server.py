"""HTTP + SSE server carrying the UI message bus for the editor extension.

The extension pushes document snapshots and UI actions over plain HTTP
and listens for host -> UI messages on a Server-Sent Events stream.
Every SSE connection starts with a ``fullUpdate`` snapshot, so a panel
that was hidden and recreated resynchronizes on reconnect.

Usage:
    beca --port PORT
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
import time
import uuid
from typing import Any

from aiohttp import web

from beca.adapters.coordinator import InteractionCoordinator
from beca.adapters.editor import DocumentSnapshot, DocumentStore
from beca.adapters.event_bus import UIMessageBus
from beca.adapters.events import ConfirmResponse, message_to_dict
from beca.adapters.host_window import BusHostWindow
from beca.engine.client import BecaClient
from beca.engine.config import BecaConfig
from beca.engine.scheduler import RequestScheduler

logger = logging.getLogger(__name__)

_DOCUMENT_EVENTS = {"opened", "changed", "saved", "closed"}


class BecaServer:
    """HTTP + SSE adapter around one ``InteractionCoordinator``.

    Thin adapter: all coordination state lives in the coordinator. This
    class only handles HTTP routing, SSE fan-out and request parsing.
    """

    def __init__(
        self,
        config: BecaConfig,
        host: str = "127.0.0.1",
        port: int = 0,
        client: BecaClient | None = None,
        scheduler: RequestScheduler | None = None,
    ) -> None:
        self._config = config
        self._host = host
        self._port = port
        self._started_at = time.time()
        self.bus = UIMessageBus()
        self.documents = DocumentStore(config.workspace_root)
        self.host_window = BusHostWindow(self.bus, config.confirm_timeout_seconds)
        self.client = client or BecaClient(config.api_url, config.request_timeout_seconds)
        self.coordinator = InteractionCoordinator(
            config=config,
            client=self.client,
            editor=self.documents,
            host=self.host_window,
            bus=self.bus,
            scheduler=scheduler,
        )
        self._background: list[asyncio.Task[Any]] = []
        self._app = web.Application(middlewares=[self._request_logging_middleware])
        self._setup_routes()
        logger.info(
            "BecaServer init host=%s port=%s workspace=%s backend=%s pid=%s",
            self._host, self._port, config.workspace_root, config.api_url, os.getpid(),
        )

    @property
    def app(self) -> web.Application:
        return self._app

    # ── Middleware ──

    @web.middleware
    async def _request_logging_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        req_id = request.headers.get("x-beca-request-id", str(uuid.uuid4())[:8])
        request["req_id"] = req_id
        start = time.monotonic()
        logger.debug("HTTP %s %s req=%s from=%s", request.method, request.path_qs, req_id, request.remote)
        try:
            response = await handler(request)
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.info(
                "HTTP %s %s req=%s status=%s duration_ms=%.1f",
                request.method, request.path_qs, req_id,
                getattr(response, "status", "?"), elapsed_ms,
            )
            return response
        except Exception:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.exception("HTTP %s %s req=%s failed duration_ms=%.1f", request.method, request.path_qs, req_id, elapsed_ms)
            raise

    # ── Route setup ──

    def _setup_routes(self) -> None:
        r = self._app.router
        r.add_get("/health", self._handle_health)
        r.add_get("/events", self._handle_sse)
        r.add_get("/state", self._handle_state)
        r.add_post("/messages", self._handle_ui_message)
        r.add_post("/documents", self._handle_document_event)
        r.add_get("/diagnostics", self._handle_get_diagnostics)
        r.add_post("/completions", self._handle_completions)
        r.add_post("/hover", self._handle_hover)
        r.add_delete("/cache", self._handle_clear_cache)

    # ── Lifecycle ──

    def start_background(self) -> None:
        """Start the inbound UI loop and the connection monitor."""
        loop = asyncio.get_running_loop()
        self._background.append(loop.create_task(self.coordinator.run()))
        self._background.append(loop.create_task(self.coordinator.monitor_connection()))

    async def start(self) -> None:
        """Start the server and print the port to stdout."""
        runner = web.AppRunner(self._app)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        await site.start()

        actual_port = self._resolve_port(runner)
        if actual_port is None:
            raise RuntimeError("BECA server started but no listening socket was reported.")
        self._port = actual_port

        sys.stdout.write(json.dumps({"port": actual_port}) + "\n")
        sys.stdout.flush()
        logger.info("BECA server listening on %s:%d", self._host, actual_port)

        self.start_background()
        try:
            await asyncio.Event().wait()
        finally:
            await self.shutdown()
            await runner.cleanup()

    @staticmethod
    def _resolve_port(runner: web.AppRunner) -> int | None:
        for address in runner.addresses:
            if isinstance(address, tuple) and len(address) >= 2:
                return int(address[1])
        return None

    async def shutdown(self) -> None:
        for task in self._background:
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()
        await self.coordinator.close()
        logger.info("BECA server shut down")

    # ── Handlers ──

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok",
            "pid": os.getpid(),
            "uptime_seconds": round(max(0.0, time.time() - self._started_at), 3),
            "workspace": self._config.workspace_root,
            "backend": self.client.api_url,
            "surfaces": self.bus.surface_count,
        })

    async def _handle_sse(self, request: web.Request) -> web.StreamResponse:
        response = web.StreamResponse(
            status=200,
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "Access-Control-Allow-Origin": "*",
            },
        )
        await response.prepare(request)

        queue = self.bus.attach()
        logger.info("SSE client connected req=%s", request.get("req_id", "unknown"))
        try:
            while True:
                try:
                    message = await asyncio.wait_for(queue.get(), timeout=30.0)
                    data = json.dumps(message_to_dict(message))
                    await response.write(f"event: {message.type}\ndata: {data}\n\n".encode())
                except asyncio.TimeoutError:
                    await response.write(b": keepalive\n\n")
                except ConnectionResetError:
                    break
        except asyncio.CancelledError:
            pass
        finally:
            self.bus.detach(queue)
            logger.info("SSE client disconnected req=%s", request.get("req_id", "unknown"))
        return response

    async def _handle_state(self, request: web.Request) -> web.Response:
        return web.json_response(self.coordinator.snapshot())

    async def _read_json(self, request: web.Request) -> tuple[dict[str, Any] | None, web.Response | None]:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None, web.json_response({"error": "Invalid JSON body"}, status=400)
        if not isinstance(body, dict):
            return None, web.json_response({"error": "Expected a JSON object"}, status=400)
        return body, None

    async def _handle_ui_message(self, request: web.Request) -> web.Response:
        body, err = await self._read_json(request)
        if err:
            return err
        if not body.get("type"):
            return web.json_response({"error": "Missing message type"}, status=400)

        if body["type"] == "confirmResponse":
            # Resolved directly: a pending confirmation holds the inbound loop.
            message = ConfirmResponse(
                request_id=str(body.get("requestId", "")),
                accepted=bool(body.get("accepted", False)),
            )
            resolved = self.host_window.resolve_confirm(message.request_id, message.accepted)
            status = "resolved" if resolved else "ignored"
            return web.json_response({"status": status})

        message = await self.bus.receive(body)
        return web.json_response({"status": "queued", "type": message.type}, status=202)

    async def _handle_document_event(self, request: web.Request) -> web.Response:
        body, err = await self._read_json(request)
        if err:
            return err
        event = body.get("event")
        uri = body.get("uri")
        if event not in _DOCUMENT_EVENTS:
            return web.json_response({"error": f"Unknown document event: {event}"}, status=400)
        if not isinstance(uri, str) or not uri:
            return web.json_response({"error": "Missing document uri"}, status=400)

        if event == "closed":
            self.documents.remove(uri)
            self.coordinator.on_document_closed(uri)
            return web.json_response({"status": "ok"})

        text = body.get("text")
        if isinstance(text, str):
            self.documents.update(DocumentSnapshot(
                uri=uri,
                text=text,
                language_id=str(body.get("languageId") or "plaintext"),
                is_dirty=bool(body.get("isDirty", False)),
                scheme=str(body.get("scheme") or "file"),
            ))
        elif self.documents.get_document(uri) is None:
            return web.json_response({"error": "Document text required"}, status=400)

        if event == "opened":
            self.coordinator.on_document_opened(uri)
        elif event == "changed":
            self.coordinator.on_document_changed(uri)
        else:
            self.coordinator.on_document_saved(uri)
        return web.json_response({"status": "ok"})

    async def _handle_get_diagnostics(self, request: web.Request) -> web.Response:
        uri = request.query.get("uri", "")
        if not uri:
            return web.json_response({"error": "Missing uri"}, status=400)
        diagnostics = self.coordinator.diagnostics_for(uri)
        return web.json_response({
            "uri": uri,
            "diagnostics": [d.to_dict() for d in diagnostics],
        })

    def _position(self, body: dict[str, Any]) -> tuple[str, int, int] | None:
        uri = body.get("uri")
        try:
            line = int(body.get("line", -1))
            character = int(body.get("character", -1))
        except (TypeError, ValueError):
            return None
        if not isinstance(uri, str) or not uri or line < 0 or character < 0:
            return None
        return uri, line, character

    async def _handle_completions(self, request: web.Request) -> web.Response:
        body, err = await self._read_json(request)
        if err:
            return err
        position = self._position(body)
        if position is None:
            return web.json_response({"error": "Expected uri, line and character"}, status=400)
        candidates = await self.coordinator.provide_completions(*position)
        items = []
        for index, candidate in enumerate(candidates):
            item = candidate.to_dict()
            # Sorts ahead of every other completion source.
            item["sortText"] = f"0{index}"
            items.append(item)
        return web.json_response({"items": items})

    async def _handle_hover(self, request: web.Request) -> web.Response:
        body, err = await self._read_json(request)
        if err:
            return err
        position = self._position(body)
        if position is None:
            return web.json_response({"error": "Expected uri, line and character"}, status=400)
        contents = await self.coordinator.provide_hover(*position)
        return web.json_response({"contents": contents})

    async def _handle_clear_cache(self, request: web.Request) -> web.Response:
        cleared = self.coordinator.scheduler.clear_cache()
        return web.json_response({"status": "cleared", "entries": cleared})
