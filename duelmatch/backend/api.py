"""FastAPI endpoints for queue join/leave, health and push notifications."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import Depends, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from .broker import BrokerService, matched_notice
from .config import load_settings
from .security import generate_identity

logger = logging.getLogger(__name__)


class JoinRequest(BaseModel):
    identity: str | None = Field(default=None, min_length=1, max_length=200)


class JoinResponse(BaseModel):
    identity: str
    status: str
    position: int | None
    match: dict[str, Any] | None = None


class LeaveRequest(BaseModel):
    identity: str = Field(min_length=1, max_length=200)


class LeaveResponse(BaseModel):
    status: str


class PositionResponse(BaseModel):
    identity: str
    status: str
    position: int | None
    match: dict[str, Any] | None = None


class HealthResponse(BaseModel):
    queue_depth: int = Field(serialization_alias="queueDepth")
    up_since: str = Field(serialization_alias="upSince")


def create_app(broker: BrokerService | None = None, run_supervisor: bool = True) -> FastAPI:
    service = broker if broker is not None else BrokerService(settings=load_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        stop = asyncio.Event()
        task = asyncio.create_task(service.run_supervisor(stop)) if run_supervisor else None
        yield
        stop.set()
        if task is not None:
            await task

    app = FastAPI(title="Duelmatch Broker", version="0.1.0", lifespan=lifespan)
    app.state.broker = service

    def get_broker() -> BrokerService:
        return service

    @app.get("/health", response_model=HealthResponse)
    def health(local_broker: BrokerService = Depends(get_broker)) -> HealthResponse:
        snapshot = local_broker.query_health()
        return HealthResponse(queue_depth=snapshot.queue_depth, up_since=snapshot.up_since)

    @app.post("/api/queue/join", response_model=JoinResponse)
    async def join_queue(
        payload: JoinRequest,
        local_broker: BrokerService = Depends(get_broker),
    ) -> JoinResponse:
        identity = payload.identity or generate_identity()
        result = await local_broker.join(identity)
        match = matched_notice(result.assignment, identity) if result.assignment is not None else None
        return JoinResponse(identity=identity, status=result.status, position=result.position, match=match)

    @app.post("/api/queue/leave", response_model=LeaveResponse)
    async def leave_queue(
        payload: LeaveRequest,
        local_broker: BrokerService = Depends(get_broker),
    ) -> LeaveResponse:
        removed = await local_broker.leave(payload.identity)
        return LeaveResponse(status="removed" if removed else "not-found")

    @app.get("/api/queue/{identity}", response_model=PositionResponse)
    def get_position(identity: str, local_broker: BrokerService = Depends(get_broker)) -> PositionResponse:
        result = local_broker.lookup(identity)
        if result is None:
            raise HTTPException(status_code=404, detail="Identity not queued")
        match = matched_notice(result.assignment, identity) if result.assignment is not None else None
        return PositionResponse(identity=identity, status=result.status, position=result.position, match=match)

    @app.websocket("/ws/queue")
    async def queue_ws(websocket: WebSocket) -> None:
        identity = websocket.query_params.get("identity")
        if identity is None or identity == "":
            await websocket.close(code=1008)
            return

        await websocket.accept()
        logger.info("ws connected identity=%s", identity)
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError as exc:
                    logger.warning("invalid JSON from %s: %s", identity, exc)
                    continue
                kind = data.get("type") if isinstance(data, dict) else None
                if kind == "join":
                    await service.join(identity, channel=websocket)
                elif kind == "leave":
                    await service.leave(identity)
                elif kind == "ping":
                    service.touch(identity)
                else:
                    logger.warning("unknown message type %r from %s", kind, identity)
        except WebSocketDisconnect:
            logger.info("ws disconnected identity=%s", identity)
        finally:
            await service.leave(identity, channel=websocket)

    return app


app = create_app()
