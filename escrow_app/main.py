# escrow_app/main.py
from __future__ import annotations

import asyncio
import importlib
import importlib.util
import logging
import os
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from escrow_app.config import project_rules as R
from escrow_app.config.feature_flags import FEATURE_FLAGS
from escrow_app import database
from escrow_app import models  # noqa: F401  (테이블 메타데이터 등록)
from escrow_app.database import Base, engine
from escrow_app.logic.sweep import run_escrow_sweep
from escrow_app.policy.params.store import get_policy

logging.basicConfig(
    level=os.getenv("ESCROW_LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("escrow_app")

APP_VERSION = "1.0.0"


# --------------------------------------------------
# 에스크로 자동 정산 워커
# --------------------------------------------------
def _sweep_once() -> None:
    db = database.SessionLocal()
    try:
        result = run_escrow_sweep(db)
        if result.released or result.auto_resolved:
            logger.info("[AUTO_RELEASE] %s", result.to_dict())
    finally:
        db.close()


async def start_auto_release_worker() -> asyncio.Task:
    """
    sweep.interval_seconds 마다 run_escrow_sweep() 실행.
    - 동기 DB 작업은 스레드로 넘겨 이벤트 루프를 막지 않는다.
    - 한 번 실패해도 워커는 계속 돈다.
    """

    async def worker():
        while True:
            interval = 60
            try:
                interval = get_policy().sweep.interval_seconds
                await asyncio.to_thread(_sweep_once)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[AUTO_RELEASE] sweep error")
            await asyncio.sleep(interval)

    return asyncio.create_task(worker())


# Lifespan
@asynccontextmanager
async def lifespan(app: FastAPI):
    R.set_test_now_utc(None)

    # ✅ DB 테이블 생성은 import 시점이 아니라 startup 시점에서
    try:
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        logger.warning("Base.metadata.create_all failed: %s: %s", e.__class__.__name__, e)

    task = None
    if FEATURE_FLAGS.get("ENABLE_AUTO_RELEASE_WORKER"):
        task = await start_auto_release_worker()

    yield

    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


app = FastAPI(title="Escrow Marketplace API", version=APP_VERSION, lifespan=lifespan)


# 예외 핸들러
@app.exception_handler(StarletteHTTPException)
async def http_exc_handler(request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def unhandled_exc_handler(request, exc: Exception):
    logger.exception("[api] unhandled %s %s", request.method, request.url.path)
    if R.DEV_DEBUG_ERRORS:
        tb_tail = traceback.format_exc().splitlines()[-1]
        return JSONResponse(
            status_code=500,
            content={
                "detail": {
                    "error": exc.__class__.__name__,
                    "msg": str(exc),
                    "where": f"{request.method} {request.url.path}",
                    "trace_tail": tb_tail,
                }
            },
        )
    return JSONResponse(status_code=500, content={"detail": "Internal error"})


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Router include helper
def _include_router_safe(module_path: str, attr_candidates: tuple[str, ...], *, label: str):
    full_mod = f"escrow_app.routers.{module_path}"
    if importlib.util.find_spec(full_mod) is None:
        logger.warning("Skip router [%s]: spec not found for '%s'", label, full_mod)
        return

    mod = importlib.import_module(full_mod)
    router_obj = None
    for name in attr_candidates:
        router_obj = getattr(mod, name, None)
        if router_obj is not None:
            break

    if router_obj is None:
        logger.warning("Skip router [%s]: none of attrs %s found in %s", label, attr_candidates, full_mod)
        return

    app.include_router(router_obj)
    logger.info("Mounted router [%s] from %s", label, full_mod)


# --------------------------------------------------
# 1️⃣ 상품 / 바우처
# --------------------------------------------------
_include_router_safe("listings", ("router",), label="listings")
_include_router_safe("vouchers", ("router",), label="vouchers")

# --------------------------------------------------
# 2️⃣ 주문 → 분쟁
# --------------------------------------------------
_include_router_safe("orders", ("router",), label="orders")
_include_router_safe("disputes", ("router",), label="disputes")

# --------------------------------------------------
# 3️⃣ 지갑 / 출금
# --------------------------------------------------
_include_router_safe("wallet", ("router",), label="wallet")
_include_router_safe("withdrawals", ("router",), label="withdrawals")

# --------------------------------------------------
# 4️⃣ Admin
# --------------------------------------------------
_include_router_safe("admin_escrow", ("router",), label="admin_escrow")


# Health/Version
@app.get("/")
def root():
    return {"message": "Escrow Marketplace API is running 🚀"}


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/version")
def version():
    return {"version": APP_VERSION, "now": R.now_utc().isoformat()}
