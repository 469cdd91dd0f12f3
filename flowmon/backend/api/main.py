"""
api/main.py

FastAPI application for the flow table.

REST:
    /api/flows, /api/fields          — read the ranked aggregates
    /api/aggregate, /api/sort        — reconfigure grouping and ranking
    /api/stats                       — counters
WebSocket:
    /ws/flows                        — periodic snapshot broadcast (see main.py)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.websockets import WebSocketDisconnect

from ..context import AppContext
from .routes import aggregate as aggregate_router
from .routes import flows as flows_router
from .routes import stats as stats_router
from .ws_manager import FLOWS_CHANNEL

logger = logging.getLogger(__name__)


def create_app(ctx: AppContext) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("FastAPI startup")
        yield
        logger.info("FastAPI shutdown")

    app = FastAPI(
        title="FlowMon — Flow Aggregation Monitor",
        version="1.0.0",
        description="Live-ranked aggregates over a stream of decoded flow records",
        lifespan=lifespan,
    )
    app.state.ctx = ctx

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # REST routers
    app.include_router(flows_router.router,     prefix="/api")
    app.include_router(aggregate_router.router, prefix="/api")
    app.include_router(stats_router.router,     prefix="/api")

    # WebSockets
    @app.websocket("/ws/flows")
    async def ws_flows(websocket: WebSocket):
        await ctx.ws.connect(websocket, FLOWS_CHANNEL)
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            await ctx.ws.disconnect(websocket, FLOWS_CHANNEL)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "ws_connections": ctx.ws.all_counts()}

    return app
