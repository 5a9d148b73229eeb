from __future__ import annotations

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Sequence

from fastapi import FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel
from starlette.websockets import WebSocketDisconnect

from .domain import Sample, batch_to_list
from .errors import DriverUnavailable
from .service import PriceService

logger = logging.getLogger(__name__)


class AddTickerRequest(BaseModel):
    ticker: str


def _batch_message(batch: Sequence[Sample]) -> dict:
    return {
        "type": "batch_update",
        "updates": batch_to_list(batch),
        "timestamp": int(time.time() * 1000),
    }


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def create_app(service: PriceService | None = None) -> FastAPI:
    service = service or PriceService()
    started_at = time.monotonic()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        await service.start()
        try:
            yield
        finally:
            await service.stop()

    app = FastAPI(title="Price Relay API", version="0.1.0", lifespan=lifespan)
    app.state.service = service
    app.add_middleware(
        CORSMiddleware,
        allow_origins=service.config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Cache-Control"],
    )

    @app.exception_handler(DriverUnavailable)
    async def driver_unavailable(_: Request, exc: DriverUnavailable):
        logger.error("Page driver unavailable: %s", exc)
        return JSONResponse(
            status_code=503,
            content={"success": False, "message": f"Page driver unavailable: {exc}"},
        )

    @app.post("/api/tickers")
    async def add_ticker(body: AddTickerRequest):
        logger.info("Request to add ticker: %s", body.ticker)
        result = await service.add_ticker(body.ticker)
        if not result.accepted:
            return JSONResponse(
                status_code=400,
                content={"success": False, "message": f"Failed to add ticker: {result.reason}"},
            )
        ticker = body.ticker.strip().upper()
        return {"success": True, "message": f"Successfully added ticker {ticker}"}

    @app.delete("/api/tickers/{ticker}")
    async def remove_ticker(ticker: str):
        logger.info("Request to remove ticker: %s", ticker)
        result = await service.remove_ticker(ticker)
        if not result.accepted:
            return JSONResponse(
                status_code=400,
                content={"success": False, "message": f"Failed to remove ticker: {ticker!r}"},
            )
        return {"success": True, "message": f"Successfully removed ticker {ticker.strip().upper()}"}

    @app.get("/api/tickers")
    async def list_tickers():
        return {"tickers": service.list_tickers()}

    @app.get("/api/stream")
    async def stream(request: Request):
        inbox: asyncio.Queue[Sequence[Sample]] = asyncio.Queue(1)
        client_id = service.subscribe(inbox.put)
        keepalive = service.config.keepalive_interval

        async def events() -> AsyncIterator[str]:
            try:
                yield _sse({"type": "connected", "clientId": client_id})
                while client_id in service.broadcaster:
                    if await request.is_disconnected():
                        break
                    try:
                        batch = await asyncio.wait_for(inbox.get(), timeout=keepalive)
                    except asyncio.TimeoutError:
                        yield ": keep-alive\n\n"
                        service.keep_alive(client_id)
                        continue
                    yield _sse(_batch_message(batch))
            finally:
                service.unsubscribe(client_id)

        return StreamingResponse(
            events(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    @app.websocket("/ws/prices")
    async def ws_prices(ws: WebSocket):
        await ws.accept()
        send_lock = asyncio.Lock()

        async def send(payload: dict) -> None:
            async with send_lock:
                await ws.send_text(json.dumps(payload))

        async def sink(batch: Sequence[Sample]) -> None:
            await send(_batch_message(batch))

        client_id = service.subscribe(sink)
        receiver = asyncio.create_task(_receive_keepalives(ws, service, client_id))
        pinger = asyncio.create_task(
            _send_keepalives(send, service, client_id, service.config.keepalive_interval)
        )
        closed = asyncio.create_task(service.broadcaster.wait_closed(client_id))
        tasks = (receiver, pinger, closed)
        try:
            await send({"type": "connected", "clientId": client_id})
            await asyncio.wait(set(tasks), return_when=asyncio.FIRST_COMPLETED)
        finally:
            evicted = closed.done() and not receiver.done()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            service.unsubscribe(client_id)
            if evicted:
                try:
                    await ws.close()
                except Exception:
                    logger.debug("Websocket %s already closed", client_id)

    @app.get("/health")
    async def health():
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get("/api/metrics")
    async def metrics():
        return service.metrics().to_dict()

    @app.get("/api/performance")
    async def performance():
        return {
            **service.performance(),
            "uptime": time.monotonic() - started_at,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app


async def _receive_keepalives(ws: WebSocket, service: PriceService, client_id: str) -> None:
    try:
        while True:
            await ws.receive_text()
            service.keep_alive(client_id)
    except WebSocketDisconnect:
        return


async def _send_keepalives(send, service: PriceService, client_id: str, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        await send({"type": "keep_alive", "timestamp": int(time.time() * 1000)})
        service.keep_alive(client_id)


app = create_app()
