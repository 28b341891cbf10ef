from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from stockroom.core.config import load_env_files, settings

# ---- load .env files (backend/.env then repo .env) ----------------------
_loaded = load_env_files()
if _loaded:
    print(f"[main] Loaded env files: {', '.join(_loaded)}")
else:
    print("[main] No .env file found next to backend/ or repo root.")

# ルーター（.env ロード後にインポート）
from stockroom.core.celery_app import init_celery  # noqa: E402
from stockroom.core.database import init_db  # noqa: E402
from stockroom.core.errors import StockError  # noqa: E402
from stockroom.routers import catalog, invoices, purchasing, sales, stock, work_orders  # noqa: E402
from stockroom.services.events import bus, register_default_subscribers  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    register_default_subscribers()
    init_celery()
    print(f"[main] stock bus subscribers: {', '.join(bus.subscribers)}")
    yield
    bus.drain()


app = FastAPI(title="Stockroom API", lifespan=lifespan)


# ---- CORS (dev-friendly) ----------------------------------------------
_default_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
origins = sorted(set(_default_origins + settings.frontend_origins))

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1|0\.0\.0\.0)(:\d+)?$",
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=86400,
)


# ---- domain errors -> JSON ---------------------------------------------
@app.exception_handler(StockError)
async def stock_error_handler(request: Request, exc: StockError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"[main] {request.method} {request.url.path} failed: {exc.code}: {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ---- register routers ------------------------------------------------------
app.include_router(catalog.router)
app.include_router(stock.router)
app.include_router(work_orders.router)
app.include_router(sales.router)
app.include_router(purchasing.router)
app.include_router(invoices.router)


# ---- simple health check ---------------------------------------------------
@app.get("/health")
async def health() -> dict[str, str]:
    """コンテナ／プロセス生存確認用エンドポイント"""
    return {"status": "ok"}
