import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, List

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from config import config
from monitoring.logging_utils import setup_logging


signal_engine = None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SymbolRequest(BaseModel):
    symbol: str


class IntervalRequest(BaseModel):
    interval: str


class ConnectionManager:
    def __init__(self):
        self.active_connections: List[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

    async def broadcast(self, message: Dict):
        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
            except Exception:
                self.disconnect(connection)


manager = ConnectionManager()


async def _broadcast_selected(signal):
    await manager.broadcast({"type": "signal", "signal": signal.to_dict(), "timestamp": _now()})


def attach_engine(engine) -> None:
    """Serve ``engine`` and push each arbitrated signal to websocket clients."""
    global signal_engine
    signal_engine = engine
    engine.register_handlers(signal_selected=_broadcast_selected)


@asynccontextmanager
async def lifespan(app: FastAPI):
    from main import SignalEngine
    engine = SignalEngine()
    attach_engine(engine)
    task = asyncio.create_task(engine.run())
    try:
        yield
    finally:
        await engine.stop()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)


app = FastAPI(title="Live Signal API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(config.api.get('cors_origins', ["*"])),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _engine():
    if signal_engine is None:
        raise HTTPException(status_code=503, detail="Signal engine not initialized")
    return signal_engine


@app.get("/")
async def root():
    return {
        "service": "Live Signal Engine",
        "version": "1.0.0",
        "status": "running" if signal_engine and signal_engine.running else "stopped",
    }


@app.get("/health")
async def health():
    engine = signal_engine
    return {
        "status": "healthy",
        "timestamp": _now(),
        "engine_running": engine.running if engine else False,
        "candles": len(engine.candle_store) if engine else 0,
        "stream_connected": bool(engine and engine.feed.stream and engine.feed.stream.connected),
    }


@app.get("/api/signal")
async def get_signal():
    engine = _engine()
    latest = engine.latest_signal
    return {
        "symbol": engine.symbol,
        "interval": engine.interval,
        "signal": latest.to_dict() if latest else None,
        "ready": engine.candle_store.is_ready(engine.min_candles),
        "timestamp": _now(),
    }


@app.get("/api/signals")
async def get_strategy_signals():
    engine = _engine()
    signals = {sid: sig.to_dict() for sid, sig in engine.strategy_signals.items()}
    return {"signals": signals, "count": len(signals), "timestamp": _now()}


@app.get("/api/history")
async def get_history():
    engine = _engine()
    entries = engine.history.entries
    return {"history": entries, "count": len(entries), "timestamp": _now()}


@app.delete("/api/history")
async def clear_history():
    engine = _engine()
    engine.clear_history()
    return {"status": "cleared", "timestamp": _now()}


@app.get("/api/candles")
async def get_candles(limit: int = Query(100, ge=1)):
    engine = _engine()
    candles = engine.candle_store.snapshot()
    candles = candles[-limit:]
    return {
        "symbol": engine.symbol,
        "interval": engine.interval,
        "candles": [c.to_dict() for c in candles],
        "count": len(candles),
    }


@app.get("/api/swings")
async def get_swings():
    engine = _engine()
    swings = [s.to_dict() for s in engine.swing_points()]
    return {"swings": swings, "count": len(swings), "timestamp": _now()}


@app.post("/api/symbol")
async def change_symbol(request: SymbolRequest):
    engine = _engine()
    await engine.change_symbol(request.symbol)
    return {"symbol": engine.symbol, "interval": engine.interval, "timestamp": _now()}


@app.post("/api/interval")
async def change_interval(request: IntervalRequest):
    engine = _engine()
    await engine.change_interval(request.interval)
    return {"symbol": engine.symbol, "interval": engine.interval, "timestamp": _now()}


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await manager.connect(websocket)
    try:
        if signal_engine and signal_engine.latest_signal:
            await websocket.send_json(
                {"type": "signal", "signal": signal_engine.latest_signal.to_dict(), "timestamp": _now()}
            )
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(websocket)


if __name__ == "__main__":
    import uvicorn
    setup_logging(config.monitoring.get('log_level'))
    uvicorn.run(
        app,
        host=config.api['host'],
        port=config.api['port'],
        log_level="info",
    )
