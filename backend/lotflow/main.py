from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lotflow.config import settings
from lotflow.database import engine
from lotflow.middleware.exceptions import register_exception_handlers
from lotflow.routers import health, lot_runs, packaging, processes, step_runs


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await engine.dispose()


app = FastAPI(
    title="LotFlow",
    description="Production lot execution engine for food-processing operations",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(processes.router, prefix="/api/processes", tags=["processes"])
app.include_router(lot_runs.router, prefix="/api/lot-runs", tags=["lot-runs"])
app.include_router(step_runs.router, prefix="/api/step-runs", tags=["step-runs"])
app.include_router(
    packaging.router,
    prefix="/api/step-runs/{step_run_id}/packaging",
    tags=["packaging"],
)
