"""FastAPI application serving the device to local browsers.

All device traffic leaves through the GatewayClient pinned to the
secondary interface.

    GET  /            -> control page (camera stream + input capture)
    GET  /static/...  -> optional static directory
    GET  /health      -> upstream / subscriber counters
    GET  /stream      -> multipart/x-mixed-replace MJPEG relay
    POST /control     <- {"type": "key", "key": "w", "pressed": true}
                      <- {"session_id": "...", "events": [...]}
    WS   /control/ws  <- one input event per JSON message
    *    /<anything>  -> forwarded verbatim to the device gateway
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import Body, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from wifiproxy.config.settings import Settings
from wifiproxy.control.base import UnknownSession
from wifiproxy.control.gateway_sink import GatewayCommandSink
from wifiproxy.control.translator import ControlTranslator
from wifiproxy.domain.models import InputEvent, Interface, SubscriptionKind
from wifiproxy.gateway.client import GatewayClient, GatewayUnreachable
from wifiproxy.server.assets import index_page, static_files
from wifiproxy.server.subscribers import SubscriberRegistry
from wifiproxy.stream.base import StreamClosed
from wifiproxy.stream.mjpeg import MEDIA_TYPE, MjpegFrameSource, encode_part
from wifiproxy.stream.relay import StreamRelay

logger = logging.getLogger(__name__)

PASS_THROUGH_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

_EVENT_ADAPTER: TypeAdapter[Any] = TypeAdapter(InputEvent)


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class ControlBatch(BaseModel):
    session_id: str | None = Field(default=None, description="Session returned by a previous call")
    events: list[InputEvent] = Field(default_factory=list)


class ControlResponse(BaseModel):
    session_id: str
    queued: int = 0


class HealthResponse(BaseModel):
    status: str = "ok"
    interface: str | None = None
    gateway: str | None = None
    upstream_active: bool = False
    frames_read: int = 0
    stream_subscribers: int = 0
    control_sessions: int = 0


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    settings: Settings | None = None,
    interface: Interface | None = None,
    client: GatewayClient | None = None,
    relay: StreamRelay | None = None,
    translator: ControlTranslator | None = None,
    registry: SubscriberRegistry | None = None,
) -> FastAPI:
    """Create the proxy application.

    Args:
        settings: Loaded settings; defaults are used when omitted.
        interface: Connected secondary interface the gateway client is
            built from when no client is given.
        client: Optional pre-configured GatewayClient (for testing).
        relay: Optional pre-configured StreamRelay (for testing).
        translator: Optional pre-configured ControlTranslator (for testing).
        registry: Optional pre-configured SubscriberRegistry (for testing).
    """
    settings = settings or Settings()
    retry_headers = {"Retry-After": str(settings.server.retry_after)}

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owns_client = False
        c = app.state.client
        if c is None and interface is not None:
            gw = settings.gateway
            c = GatewayClient.from_interface(
                interface,
                port=gw.port,
                timeout=gw.timeout,
                command_timeout=gw.command_timeout,
                read_attempts=gw.read_attempts,
                retry_backoff=gw.retry_backoff,
            )
            app.state.client = c
            owns_client = True

        if c is not None and app.state.relay is None:
            app.state.relay = StreamRelay(
                MjpegFrameSource(
                    c,
                    path=settings.gateway.stream_path,
                    port=settings.gateway.stream_port,
                    max_frame_bytes=settings.stream.max_frame_bytes,
                ),
                buffer_size=settings.stream.buffer_size,
                reconnect_attempts=settings.stream.reconnect_attempts,
                reconnect_backoff=settings.stream.reconnect_backoff,
            )
        if c is not None and app.state.translator is None:
            app.state.translator = ControlTranslator(
                GatewayCommandSink(c, path=settings.gateway.control_path),
                heartbeat_interval=settings.control.heartbeat_interval,
                min_send_interval=settings.control.min_send_interval,
                deadzone=settings.control.deadzone,
                queue_size=settings.control.queue_size,
            )

        app.state.reaper = asyncio.create_task(_reap_idle(app, settings.server.idle_timeout))
        if c is not None:
            logger.info("Proxy started (gateway=%s via %s)", c.gateway, c.local_address)
        else:
            logger.warning("Proxy started without a gateway; device routes will answer 502")
        yield
        # Shutdown; the interface itself stays connected
        app.state.reaper.cancel()
        try:
            await app.state.reaper
        except asyncio.CancelledError:
            pass
        if app.state.translator is not None:
            await app.state.translator.close()
        if app.state.relay is not None:
            await app.state.relay.close()
        app.state.registry.clear()
        if owns_client:
            await c.close()
        logger.info("Proxy stopped")

    app = FastAPI(
        title="wifi-proxy",
        description="Browser proxy for a device reachable over a secondary Wi-Fi interface",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.interface = interface
    app.state.client = client
    app.state.relay = relay
    app.state.translator = translator
    app.state.registry = registry if registry is not None else SubscriberRegistry()

    def unavailable(reason: str) -> JSONResponse:
        return JSONResponse({"detail": reason}, status_code=502, headers=retry_headers)

    # -------------------------------------------------------------------
    # Page and health
    # -------------------------------------------------------------------

    @app.get("/", response_class=HTMLResponse)
    async def index() -> HTMLResponse:
        return HTMLResponse(index_page(settings.server.static_dir))

    @app.get("/health")
    async def health_check() -> HealthResponse:
        r: StreamRelay | None = app.state.relay
        t: ControlTranslator | None = app.state.translator
        c: GatewayClient | None = app.state.client
        reg: SubscriberRegistry = app.state.registry
        return HealthResponse(
            status="ok" if c is not None else "degraded",
            interface=interface.name if interface else None,
            gateway=c.gateway if c else None,
            upstream_active=r.upstream_active if r else False,
            frames_read=r.frames_read if r else 0,
            stream_subscribers=reg.count(SubscriptionKind.STREAM),
            control_sessions=t.session_count if t else 0,
        )

    # -------------------------------------------------------------------
    # Stream relay
    # -------------------------------------------------------------------

    @app.get("/stream")
    async def stream() -> Response:
        r: StreamRelay | None = app.state.relay
        reg: SubscriberRegistry = app.state.registry
        if r is None:
            return unavailable("No gateway configured")

        subscriber = reg.register(SubscriptionKind.STREAM)
        subscription = r.subscribe(subscriber.id)

        def release() -> None:
            r.unsubscribe(subscriber.id)
            reg.remove(subscriber.id)

        handed_off = False
        try:
            first = await subscription.get()
            handed_off = True
        except (GatewayUnreachable, StreamClosed) as e:
            logger.warning("Stream request failed before the first frame: %s", e)
            return unavailable(f"Device stream unavailable: {e}")
        finally:
            if not handed_off:
                release()

        async def parts() -> AsyncIterator[bytes]:
            frame = first
            try:
                while True:
                    yield encode_part(frame.payload, frame.sequence)
                    reg.touch(subscriber.id)
                    try:
                        frame = await subscription.get()
                    except (GatewayUnreachable, StreamClosed) as e:
                        logger.info("Stream for %s ended: %s", subscriber.id, e)
                        return
            finally:
                release()

        return StreamingResponse(
            parts(),
            media_type=MEDIA_TYPE,
            headers={"Cache-Control": "no-cache, no-store", "Pragma": "no-cache"},
        )

    # -------------------------------------------------------------------
    # Control
    # -------------------------------------------------------------------

    @app.post("/control")
    async def control(payload: dict[str, Any] = Body(...)) -> ControlResponse:
        t: ControlTranslator | None = app.state.translator
        reg: SubscriberRegistry = app.state.registry
        if t is None:
            raise HTTPException(status_code=502, detail="No gateway configured", headers=retry_headers)
        try:
            if "events" in payload:
                batch = ControlBatch.model_validate(payload)
            else:
                batch = ControlBatch(
                    session_id=payload.get("session_id"),
                    events=[_EVENT_ADAPTER.validate_python(payload)],
                )
        except ValidationError as e:
            # input is left out: it may hold NaN, which JSON responses reject
            detail = e.errors(include_url=False, include_context=False, include_input=False)
            raise HTTPException(status_code=422, detail=detail) from e

        if batch.session_id is None:
            session_id = reg.register(SubscriptionKind.CONTROL).id
            t.open_session(session_id)
        else:
            session_id = batch.session_id
            if not reg.touch(session_id):
                raise HTTPException(status_code=404, detail=f"Unknown control session {session_id}")
        try:
            for event in batch.events:
                t.submit(session_id, event)
        except UnknownSession as e:
            raise HTTPException(status_code=404, detail=f"Unknown control session {session_id}") from e
        return ControlResponse(session_id=session_id, queued=len(batch.events))

    @app.websocket("/control/ws")
    async def control_ws(websocket: WebSocket) -> None:
        t: ControlTranslator | None = app.state.translator
        reg: SubscriberRegistry = app.state.registry
        await websocket.accept()
        if t is None:
            await websocket.close(code=1011, reason="No gateway configured")
            return

        subscriber = reg.register(SubscriptionKind.CONTROL)
        t.open_session(subscriber.id)
        try:
            await websocket.send_json({"session_id": subscriber.id})
            while True:
                text = await websocket.receive_text()
                if not reg.touch(subscriber.id):
                    await websocket.close(code=1001, reason="Session expired")
                    break
                try:
                    message = json.loads(text)
                    if isinstance(message, dict) and message.get("type") == "ping":
                        continue
                    event = _EVENT_ADAPTER.validate_python(message)
                except (ValueError, ValidationError) as e:
                    await websocket.send_json({"error": f"Invalid input event: {e}"})
                    continue
                t.submit(subscriber.id, event)
        except WebSocketDisconnect:
            logger.debug("Control socket %s disconnected", subscriber.id)
        finally:
            reg.remove(subscriber.id)
            await t.close_session(subscriber.id)

    # -------------------------------------------------------------------
    # Static files and gateway pass-through (registered last)
    # -------------------------------------------------------------------

    static_app = static_files(settings.server.static_dir)
    if static_app is not None:
        app.mount("/static", static_app, name="static")

    @app.api_route("/{path:path}", methods=PASS_THROUGH_METHODS)
    async def pass_through(path: str, request: Request) -> Response:
        c: GatewayClient | None = app.state.client
        if c is None:
            return unavailable("No gateway configured")
        headers = {}
        if "content-type" in request.headers:
            headers["Content-Type"] = request.headers["content-type"]
        body = await request.body()
        try:
            resp = await c.request(
                request.method,
                "/" + path,
                body=body or None,
                params=request.url.query or None,
                headers=headers,
            )
        except GatewayUnreachable as e:
            logger.warning("Pass-through %s /%s failed: %s", request.method, path, e)
            return unavailable(str(e))
        return Response(
            content=resp.content,
            status_code=resp.status_code,
            media_type=resp.headers.get("content-type"),
        )

    return app


async def _reap_idle(app: FastAPI, idle_timeout: float) -> None:
    """Periodically close subscribers that stopped showing signs of life."""
    interval = max(0.5, min(idle_timeout / 2, 5.0))
    while True:
        await asyncio.sleep(interval)
        reg: SubscriberRegistry = app.state.registry
        for subscriber in reg.idle(idle_timeout):
            logger.info("Closing idle %s subscriber %s", subscriber.kind.value, subscriber.id)
            reg.remove(subscriber.id)
            if subscriber.kind == SubscriptionKind.STREAM and app.state.relay is not None:
                app.state.relay.unsubscribe(subscriber.id)
            elif subscriber.kind == SubscriptionKind.CONTROL and app.state.translator is not None:
                await app.state.translator.close_session(subscriber.id)
