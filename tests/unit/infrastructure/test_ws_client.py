"""Tests for the aiohttp websocket GatewayClient against a local server."""

from __future__ import annotations

import asyncio
import json
import socket
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable

import pytest
from aiohttp import web

from chatrelay.application.gateway_call import call_gateway
from chatrelay.core.domain.config_schema import RelayConfig
from chatrelay.core.domain.errors import GatewayClosedError, GatewayRequestError
from chatrelay.core.domain.gateway import (
    CallGatewayOptions,
    GatewayClientOptions,
    GatewayEnvironment,
)
from chatrelay.infrastructure.gateway.ws_client import GatewayClient

Handler = Callable[[web.WebSocketResponse, dict[str, Any]], Awaitable[bool]]


def _res(frame: dict[str, Any], payload: Any = None, *, ok: bool = True, error: Any = None) -> dict[str, Any]:
    response: dict[str, Any] = {"type": "res", "id": frame["id"], "ok": ok}
    if ok:
        response["payload"] = payload
    else:
        response["error"] = error
    return response


class FakeGateway:
    """Minimal gateway: answers connect, then delegates to ``on_request``."""

    def __init__(
        self,
        on_request: Handler | None = None,
        *,
        reject_connect: bool = False,
        hello_frames: list[Any] | None = None,
    ) -> None:
        self.on_request = on_request
        self.reject_connect = reject_connect
        self.hello_frames = hello_frames or []
        self.frames: list[dict[str, Any]] = []

    async def handle(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        async for message in ws:
            frame = json.loads(message.data)
            self.frames.append(frame)
            if frame["method"] == "connect":
                if self.reject_connect:
                    await ws.send_json(
                        _res(frame, ok=False, error={"code": "UNAUTHORIZED", "message": "bad token"})
                    )
                else:
                    for extra in self.hello_frames:
                        if isinstance(extra, str):
                            await ws.send_str(extra)
                        else:
                            await ws.send_json(extra)
                    await ws.send_json(_res(frame, {"type": "hello-ok", "protocol": 3}))
            elif self.on_request is not None:
                if not await self.on_request(ws, frame):
                    break
        return ws


@asynccontextmanager
async def _serve(gateway: FakeGateway) -> AsyncIterator[str]:
    app = web.Application()
    app.router.add_get("/", gateway.handle)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    host, port = runner.addresses[0][:2]
    try:
        yield f"ws://{host}:{port}/"
    finally:
        await runner.cleanup()


def _unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


async def _call(url: str, method: str, *, connection_factory: Any = None, **kwargs: Any) -> Any:
    return await call_gateway(
        CallGatewayOptions(method=method, url=url, timeout_ms=5000, **kwargs),
        config=RelayConfig(),
        env=GatewayEnvironment(),
        connection_factory=connection_factory,
    )


@pytest.mark.asyncio
async def test_call_round_trip_with_handshake_params() -> None:
    async def on_request(ws: web.WebSocketResponse, frame: dict[str, Any]) -> bool:
        await ws.send_json(_res(frame, {"status": "ok", "echo": frame.get("params")}))
        return True

    gateway = FakeGateway(on_request)
    async with _serve(gateway) as url:
        result = await _call(url, "health", params={"deep": True}, token="secret", instance_id="inst-1")

    assert result == {"status": "ok", "echo": {"deep": True}}
    connect = gateway.frames[0]
    assert connect["type"] == "req"
    assert connect["method"] == "connect"
    assert connect["params"]["minProtocol"] == 3
    assert connect["params"]["maxProtocol"] == 3
    assert connect["params"]["client"]["name"] == "cli"
    assert connect["params"]["client"]["mode"] == "cli"
    assert connect["params"]["client"]["instanceId"] == "inst-1"
    assert connect["params"]["auth"] == {"token": "secret"}
    assert gateway.frames[1]["method"] == "health"


@pytest.mark.asyncio
async def test_expect_final_skips_accepted_responses() -> None:
    async def on_request(ws: web.WebSocketResponse, frame: dict[str, Any]) -> bool:
        await ws.send_json({"type": "event", "event": "agent", "payload": {"stream": "lifecycle"}})
        await ws.send_json(_res(frame, {"status": "accepted", "runId": "r1"}))
        await ws.send_json(_res(frame, {"status": "ok", "runId": "r1", "text": "done"}))
        return True

    async with _serve(FakeGateway(on_request)) as url:
        result = await _call(url, "agent", params={"message": "hi"}, expect_final=True)

    assert result == {"status": "ok", "runId": "r1", "text": "done"}


@pytest.mark.asyncio
async def test_event_frames_before_hello_are_ignored() -> None:
    async def on_request(ws: web.WebSocketResponse, frame: dict[str, Any]) -> bool:
        await ws.send_json({"type": "event", "event": "presence", "payload": {}})
        await ws.send_json(_res(frame, {"status": "ok"}))
        return True

    gateway = FakeGateway(
        on_request,
        hello_frames=[
            {"type": "event", "event": "tick", "payload": {"ts": 1}},
            "not json",
            ["not", "an", "object"],
        ],
    )
    async with _serve(gateway) as url:
        result = await asyncio.wait_for(_call(url, "health"), timeout=3)

    assert result == {"status": "ok"}


class _FailingFrameClient(GatewayClient):
    """Client whose frame handler blows up on frames marked ``boom``."""

    def _handle_frame(self, raw: str) -> None:
        if "boom" in raw:
            raise RuntimeError("frame handler failed")
        super()._handle_frame(raw)


class _CrashingReaderClient(GatewayClient):
    """Client whose read loop crashes after the handshake starts."""

    async def _read_frames(self, ws: Any) -> tuple[int, str]:
        await asyncio.sleep(0)
        raise RuntimeError("reader crashed")


@pytest.mark.asyncio
async def test_failing_frame_is_skipped() -> None:
    async def on_request(ws: web.WebSocketResponse, frame: dict[str, Any]) -> bool:
        await ws.send_json({"type": "event", "event": "boom"})
        await ws.send_json(_res(frame, {"status": "ok"}))
        return True

    async with _serve(FakeGateway(on_request)) as url:
        result = await asyncio.wait_for(
            _call(url, "health", connection_factory=_FailingFrameClient), timeout=3
        )

    assert result == {"status": "ok"}


@pytest.mark.asyncio
async def test_crashed_read_loop_reports_abnormal_close() -> None:
    async with _serve(FakeGateway()) as url:
        with pytest.raises(GatewayClosedError) as excinfo:
            await asyncio.wait_for(
                _call(url, "health", connection_factory=_CrashingReaderClient), timeout=3
            )

    assert excinfo.value.close_code == 1006
    assert excinfo.value.reason == "reader crashed"


@pytest.mark.asyncio
async def test_accepted_response_is_final_without_expect_final() -> None:
    async def on_request(ws: web.WebSocketResponse, frame: dict[str, Any]) -> bool:
        await ws.send_json(_res(frame, {"status": "accepted", "runId": "r1"}))
        return True

    async with _serve(FakeGateway(on_request)) as url:
        result = await _call(url, "agent")

    assert result == {"status": "accepted", "runId": "r1"}


@pytest.mark.asyncio
async def test_gateway_error_response_raises_request_error() -> None:
    async def on_request(ws: web.WebSocketResponse, frame: dict[str, Any]) -> bool:
        await ws.send_json(
            _res(frame, ok=False, error={"code": "INVALID_REQUEST", "message": "unknown method: nope"})
        )
        return True

    async with _serve(FakeGateway(on_request)) as url:
        with pytest.raises(GatewayRequestError, match="unknown method: nope") as excinfo:
            await _call(url, "nope")

    assert excinfo.value.error_code == "INVALID_REQUEST"


@pytest.mark.asyncio
async def test_server_close_is_reported_with_code_and_reason() -> None:
    async def on_request(ws: web.WebSocketResponse, frame: dict[str, Any]) -> bool:
        await ws.close(code=4001, message=b"going away")
        return False

    async with _serve(FakeGateway(on_request)) as url:
        with pytest.raises(GatewayClosedError) as excinfo:
            await _call(url, "health")

    assert excinfo.value.close_code == 4001
    assert str(excinfo.value).startswith("gateway closed (4001): going away\n")


@pytest.mark.asyncio
async def test_rejected_connect_closes_the_connection() -> None:
    async with _serve(FakeGateway(reject_connect=True)) as url:
        with pytest.raises(GatewayClosedError) as excinfo:
            await _call(url, "health")

    assert excinfo.value.close_code == 1008
    assert "connect failed" in str(excinfo.value)


@pytest.mark.asyncio
async def test_unreachable_gateway_reports_abnormal_closure() -> None:
    url = f"ws://127.0.0.1:{_unused_port()}"

    with pytest.raises(GatewayClosedError) as excinfo:
        await _call(url, "health")

    assert excinfo.value.close_code == 1006
    message = str(excinfo.value)
    assert message.startswith("gateway closed (1006 abnormal closure (no close frame)): ")
    assert f"Gateway target: {url}\nSource: explicit --url" in message


@pytest.mark.asyncio
async def test_stop_does_not_report_close() -> None:
    hello = asyncio.Event()
    closes: list[tuple[int, str]] = []

    async def on_hello_ok(payload: Any) -> None:
        hello.set()

    async with _serve(FakeGateway()) as url:
        client = GatewayClient(
            GatewayClientOptions(
                url=url,
                instance_id="inst",
                client_name="cli",
                client_version="0.0.0",
                platform="linux",
                mode="cli",
                min_protocol=3,
                max_protocol=3,
                on_hello_ok=on_hello_ok,
                on_close=lambda code, reason: closes.append((code, reason)),
            )
        )
        client.start()
        await asyncio.wait_for(hello.wait(), timeout=5)
        client.stop()
        await client.wait_closed()

    assert closes == []


@pytest.mark.asyncio
async def test_request_before_connect_raises() -> None:
    client = GatewayClient(
        GatewayClientOptions(
            url="ws://127.0.0.1:1",
            instance_id="inst",
            client_name="cli",
            client_version="0.0.0",
            platform="linux",
            mode="cli",
            min_protocol=3,
            max_protocol=3,
            on_hello_ok=lambda payload: asyncio.sleep(0),
            on_close=lambda code, reason: None,
        )
    )

    with pytest.raises(GatewayRequestError, match="not connected"):
        await client.request("health")
