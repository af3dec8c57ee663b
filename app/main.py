# app/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.errors import workflow_error_handler
from app.api.problem import make_problem
from app.core.config import get_settings
from app.core.logging import setup_logging
from app.db.session import close_engines
from app.services.workflow_errors import WorkflowError

settings = get_settings()
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger("stageflow")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    logger.info("StageFlow starting env=%s", settings.ENV)
    yield
    await close_engines()


app = FastAPI(
    title="StageFlow",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:5173",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def _unhandled_exc(_req: Request, exc: Exception):
    logger.exception("UNHANDLED_EXC: %s", exc)
    return JSONResponse(status_code=500, content={"detail": "INTERNAL_ERROR"})


@app.exception_handler(RequestValidationError)
async def _validation_exc(_req: Request, exc: RequestValidationError):
    # 请求形状不合法：读库之前拒绝，逐字段返回
    return JSONResponse(
        status_code=422,
        content=make_problem(
            status_code=422,
            error_code="validation_error",
            message="Request validation failed.",
            details=[
                {
                    "type": "validation",
                    "path": ".".join(str(p) for p in e.get("loc", ())),
                    "reason": str(e.get("msg", "")),
                }
                for e in exc.errors()
            ],
        ),
    )


@app.exception_handler(HTTPException)
async def _http_exc(_req: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


app.add_exception_handler(WorkflowError, workflow_error_handler)


# ===========================
#        工序流转
# ===========================
from app.api.routers.dashboard import router as dashboard_router  # noqa: E402
from app.api.routers.items import router as items_router  # noqa: E402
from app.api.routers.orders import router as orders_router  # noqa: E402
from app.api.routers.workflow import router as workflow_router  # noqa: E402
from app.api.routers.workflow_settings import router as workflow_settings_router  # noqa: E402
from app.metrics import router as metrics_router  # noqa: E402

# ===========================
#          挂载路由
# ===========================
app.include_router(items_router)
app.include_router(orders_router)
app.include_router(workflow_router)
app.include_router(workflow_settings_router)
app.include_router(dashboard_router)
app.include_router(metrics_router)


@app.get("/")
async def root():
    return {"name": "StageFlow", "version": "1.0.0"}


@app.get("/ping")
async def ping():
    return {"status": "ok"}


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}
