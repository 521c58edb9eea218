"""Websocket connection to the gateway, built on aiohttp.

Implements ``GatewayConnectionProtocol``. Frames are JSON text messages:

- request:  ``{"type": "req", "id", "method", "params"}``
- response: ``{"type": "res", "id", "ok", "payload", "error"}``
- event:    ``{"type": "event", "event", "payload"}``

The first request on every connection is ``connect``; its successful
response is the hello-ok that triggers ``on_hello_ok``.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

import aiohttp
import structlog

from chatrelay.core.domain.errors import GatewayRequestError
from chatrelay.core.domain.gateway import GatewayClientOptions

logger = structlog.get_logger(__name__)

CLOSE_ABNORMAL = 1006
CLOSE_POLICY_VIOLATION = 1008


@dataclass
class _PendingRequest:
    method: str
    future: asyncio.Future[Any]
    expect_final: bool


class GatewayClient:
    """One websocket connection to the gateway.

    ``start()`` schedules the connection task and returns immediately.
    ``stop()`` cancels it; a connection ended by ``stop()`` never reports
    ``on_close``.
    """

    def __init__(self, options: GatewayClientOptions, *, heartbeat: float = 30.0) -> None:
        self._options = options
        self._heartbeat = heartbeat
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._task: asyncio.Task[None] | None = None
        self._hello_task: asyncio.Task[None] | None = None
        self._pending: dict[str, _PendingRequest] = {}
        self._local_close: tuple[int, str] | None = None
        self._stopped = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start connecting in the background."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run(), name="gateway-client")

    def stop(self) -> None:
        """Close the connection without reporting ``on_close``."""
        if self._stopped:
            return
        self._stopped = True
        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def wait_closed(self) -> None:
        """Wait for the connection and handshake tasks to finish."""
        current = asyncio.current_task()
        tasks = [
            task
            for task in (self._task, self._hello_task)
            if task is not None and task is not current
        ]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        params: Any = None,
        *,
        expect_final: bool = False,
    ) -> Any:
        """Send a request frame and wait for its response payload."""
        ws = self._ws
        if ws is None or ws.closed:
            raise GatewayRequestError(f"gateway not connected (method {method})")

        request_id = str(uuid4())
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = _PendingRequest(method, future, expect_final)

        frame: dict[str, Any] = {"type": "req", "id": request_id, "method": method}
        if params is not None:
            frame["params"] = params
        try:
            await ws.send_str(json.dumps(frame))
        except (ConnectionError, aiohttp.ClientError) as exc:
            self._pending.pop(request_id, None)
            raise GatewayRequestError(f"failed to send {method}: {exc}") from exc

        logger.debug("gateway.client.request_sent", method=method, request_id=request_id)
        return await future

    # ------------------------------------------------------------------
    # Internal connection loop
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        close_code, close_reason = CLOSE_ABNORMAL, ""
        try:
            async with aiohttp.ClientSession() as session:
                async with session.ws_connect(
                    self._options.url,
                    heartbeat=self._heartbeat,
                ) as ws:
                    self._ws = ws
                    logger.debug("gateway.client.connected", url=self._options.url)
                    self._hello_task = asyncio.create_task(
                        self._handshake(), name="gateway-handshake"
                    )
                    close_code, close_reason = await self._read_frames(ws)
                    if self._local_close is not None:
                        close_code, close_reason = self._local_close
        except asyncio.CancelledError:
            if not self._stopped:
                raise
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
            close_reason = str(exc) or type(exc).__name__
            logger.debug("gateway.client.connect_error", url=self._options.url, error=close_reason)
        except Exception as exc:
            close_code, close_reason = CLOSE_ABNORMAL, str(exc) or type(exc).__name__
            logger.error(
                "gateway.client.crashed",
                url=self._options.url,
                error=close_reason,
                error_type=type(exc).__name__,
            )
        finally:
            self._ws = None
            self._fail_pending(GatewayRequestError("gateway connection closed"))

        logger.debug(
            "gateway.client.closed",
            url=self._options.url,
            code=close_code,
            reason=close_reason,
            requested=self._stopped,
        )
        if not self._stopped:
            self._options.on_close(close_code, close_reason)

    async def _read_frames(self, ws: aiohttp.ClientWebSocketResponse) -> tuple[int, str]:
        """Dispatch frames until the socket closes; return (code, reason)."""
        while True:
            message = await ws.receive()
            if message.type == aiohttp.WSMsgType.TEXT:
                try:
                    self._handle_frame(message.data)
                except Exception as exc:
                    logger.warning(
                        "gateway.client.frame_failed",
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )
            elif message.type == aiohttp.WSMsgType.CLOSE:
                return int(message.data or CLOSE_ABNORMAL), str(message.extra or "")
            elif message.type in (aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                return ws.close_code or CLOSE_ABNORMAL, ""
            elif message.type == aiohttp.WSMsgType.ERROR:
                return CLOSE_ABNORMAL, str(ws.exception() or message.data or "websocket error")

    async def _handshake(self) -> None:
        options = self._options
        params: dict[str, Any] = {
            "minProtocol": options.min_protocol,
            "maxProtocol": options.max_protocol,
            "client": {
                "name": options.client_name,
                "version": options.client_version,
                "platform": options.platform,
                "mode": options.mode,
                "instanceId": options.instance_id,
            },
        }
        auth = {
            key: value
            for key, value in (("token", options.token), ("password", options.password))
            if value
        }
        if auth:
            params["auth"] = auth

        try:
            hello = await self.request("connect", params)
        except GatewayRequestError as exc:
            logger.warning("gateway.client.connect_failed", url=options.url, error=str(exc))
            ws = self._ws
            if ws is not None and not ws.closed:
                self._local_close = (CLOSE_POLICY_VIOLATION, "connect failed")
                await ws.close(code=CLOSE_POLICY_VIOLATION, message=b"connect failed")
            return

        logger.debug("gateway.client.hello_ok", url=options.url)
        await options.on_hello_ok(hello)

    def _handle_frame(self, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("gateway.client.bad_frame", preview=raw[:100])
            return
        if not isinstance(frame, dict):
            return

        kind = frame.get("type")
        if kind == "res":
            self._handle_response(frame)
        elif kind == "event":
            logger.debug("gateway.client.event", event_name=frame.get("event"))

    def _handle_response(self, frame: dict[str, Any]) -> None:
        request_id = str(frame.get("id"))
        pending = self._pending.get(request_id)
        if pending is None:
            return

        payload = frame.get("payload")
        ok = bool(frame.get("ok"))
        if (
            ok
            and pending.expect_final
            and isinstance(payload, dict)
            and payload.get("status") == "accepted"
        ):
            # Intermediate acknowledgement; the final response follows.
            return

        del self._pending[request_id]
        if pending.future.done():
            return
        if ok:
            pending.future.set_result(payload)
            return
        error = frame.get("error") if isinstance(frame.get("error"), dict) else {}
        pending.future.set_exception(
            GatewayRequestError(
                str(error.get("message") or f"gateway request failed: {pending.method}"),
                error_code=error.get("code"),
            )
        )

    def _fail_pending(self, error: GatewayRequestError) -> None:
        pending, self._pending = self._pending, {}
        for request in pending.values():
            if not request.future.done():
                request.future.set_exception(error)
