"""
HTTP entrypoint. Run: uvicorn order_workflow.main:app
"""
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from order_workflow.config import settings
from order_workflow.db import PostgresOrderStore, close_pool, get_pool, init_schema
from order_workflow.engine import WorkflowEngine
from order_workflow.errors import WorkflowError
from order_workflow.metrics import get_metrics_bytes, get_metrics_content_type
from order_workflow.redis_client import close_redis, get_redis
from order_workflow.routes import admin, orders
from order_workflow.stages import DEFAULT_TABLE
from order_workflow.store import InMemoryOrderStore

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


async def build_engine() -> WorkflowEngine:
    if settings.store_backend == "memory":
        store = InMemoryOrderStore()
    else:
        pool = await get_pool()
        await init_schema(pool)
        store = PostgresOrderStore(pool)
    logger.info("Schema ready. Store=%s, %d transitions loaded", settings.store_backend, len(DEFAULT_TABLE))
    return WorkflowEngine(
        store,
        DEFAULT_TABLE,
        override_note_prefix=settings.override_note_prefix,
        override_max_attempts=settings.override_max_attempts,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.engine = await build_engine()
    if settings.redis_url:
        await get_redis()
    yield
    await close_redis()
    await close_pool()


app = FastAPI(title="Order Workflow Engine", lifespan=lifespan)
app.include_router(orders.router)
app.include_router(admin.router)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/state-machine")
async def state_machine() -> dict:
    """The full transition table, for documentation and client-side rendering of valid actions."""
    table = DEFAULT_TABLE
    return {
        "initial_stage": table.initial_stage.value,
        "terminal_stages": [s.value for s in table.terminal_stages()],
        "transitions": [
            {"from": t.from_stage.value, "to": t.to_stage.value, "actor": t.actor_role.value}
            for t in table.transitions()
        ],
    }


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint: orders placed, transitions applied/rejected, overrides."""
    return Response(
        content=get_metrics_bytes(),
        media_type=get_metrics_content_type(),
    )
