import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import Response
from fastapi.middleware.cors import CORSMiddleware
from config import config, get_config_section
from api.metrics import metrics
from api.schemas import StatusBatchRequest, TransactionRequest
from monitoring.async_utils import cancel_and_wait
from monitoring.logging_utils import setup_logging


logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class WebSocketSubscriber:
    """Broadcaster handle wrapping one accepted websocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def send_json(self, message: Dict[str, Any]) -> None:
        await self.websocket.send_json(message)


def _system(request: Request):
    system = getattr(request.app.state, 'system', None)
    if system is None:
        raise HTTPException(status_code=503, detail="Price board not initialized")
    return system


def create_app(system=None, run_scheduler: bool = True, config_obj=None) -> FastAPI:
    cfg = config_obj if config_obj is not None else config
    api_cfg = get_config_section(cfg, 'api')

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.system is None:
            from main import PriceBoardSystem
            app.state.system = PriceBoardSystem(cfg)
        board = app.state.system
        task = asyncio.create_task(board.start()) if run_scheduler else None
        try:
            yield
        finally:
            await board.stop()
            await cancel_and_wait(task)

    app = FastAPI(title="Gold Price Board API", version="1.0.0", lifespan=lifespan)
    app.state.system = system

    app.add_middleware(
        CORSMiddleware,
        allow_origins=api_cfg.get('cors_origins', ["*"]),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root(request: Request):
        board = getattr(request.app.state, 'system', None)
        return {
            "service": "Gold Price Board",
            "version": "1.0.0",
            "status": "running" if board and board.running else "stopped"
        }

    @app.get("/favicon.ico")
    async def favicon():
        return Response(content=b"", media_type="image/x-icon")

    @app.get("/health")
    async def health(request: Request):
        board = getattr(request.app.state, 'system', None)
        return {
            "status": "healthy",
            "timestamp": _now_iso(),
            "system_running": board.running if board else False,
            "subscribers": board.broadcaster.subscriber_count if board else 0,
        }

    @app.get("/api/prices")
    async def get_prices(request: Request):
        return _system(request).price_store.to_dict()

    @app.get("/api/status")
    async def get_status(request: Request):
        return _system(request).status_controller.to_dict()

    @app.post("/api/status")
    async def update_status(payload: StatusBatchRequest, request: Request):
        board = _system(request)
        try:
            statuses = board.update_statuses(payload.as_mapping())
        except ValueError as exc:
            metrics.record_rejected_request('status')
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"success": True, "statuses": statuses}

    @app.get("/api/transactions")
    async def get_transactions(request: Request, limit: Optional[int] = Query(default=None, ge=1)):
        return [t.to_dict() for t in _system(request).transaction_log.list(limit)]

    @app.get("/api/transactions/{transaction_id}")
    async def get_transaction(transaction_id: str, request: Request):
        transaction = _system(request).transaction_log.get(transaction_id)
        if transaction is None:
            raise HTTPException(status_code=404, detail=f"Transaction '{transaction_id}' not found")
        return transaction.to_dict()

    @app.post("/api/transactions")
    async def create_transaction(payload: TransactionRequest, request: Request):
        board = _system(request)
        try:
            transaction = board.record_transaction(payload.symbol, payload.price, payload.side)
        except ValueError as exc:
            metrics.record_rejected_request('transaction')
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"success": True, "transaction": transaction.to_dict()}

    @app.get("/api/snapshot")
    async def get_snapshot(request: Request):
        return _system(request).snapshot()

    @app.get("/api/scheduler")
    async def get_scheduler(request: Request):
        scheduler = _system(request).scheduler
        report = scheduler.last_report
        return {
            "running": scheduler.running,
            "tick_in_flight": scheduler.tick_in_flight,
            "interval_s": scheduler.interval_s,
            "last_tick": report.to_dict() if report else None,
            "timestamp": _now_iso(),
        }

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        board = getattr(websocket.app.state, 'system', None)
        await websocket.accept()
        if board is None:
            await websocket.close(code=1013)
            return

        subscriber = WebSocketSubscriber(websocket)
        outbox = board.broadcaster.subscribe(subscriber)
        pump = asyncio.create_task(board.broadcaster.pump(subscriber, outbox))
        try:
            while True:
                # Inbound frames are ignored; reading only detects disconnects
                message = await websocket.receive()
                if message.get("type") == "websocket.disconnect":
                    break
        except WebSocketDisconnect:
            pass
        finally:
            board.broadcaster.unsubscribe(subscriber)
            await cancel_and_wait(pump)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    setup_logging(config.monitoring.get('log_level', 'INFO'))
    uvicorn.run(
        app,
        host=config.api['host'],
        port=int(config.api['port']),
        log_level="info"
    )
