"""
Budgeteer API
FastAPI backend for multi-tenant project budgeting: supplier price catalog,
tiered price selection, estimates and a reporting-only financial overlay.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from budgeteer import config
from budgeteer.db import init_db
from budgeteer.services.errors import BudgetError, NotFoundError
from budgeteer.services.logging_config import setup_logging
from budgeteer.services.middleware import RequestTimingMiddleware, SecurityHeadersMiddleware

setup_logging(level=config.LOG_LEVEL, json_output=config.LOG_JSON)
logger = logging.getLogger("budgeteer-api")

# Startup validation
if not config.DATABASE_CONFIGURED:
    logger.warning("MISSING env var: DATABASE_URL — running in dev mode")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield


app = FastAPI(
    title="Budgeteer API",
    version="1.0.0",
    description="Project budgeting: supplier price tiers, estimates and financial overlay",
    lifespan=lifespan,
)


@app.exception_handler(BudgetError)
async def budget_error_handler(request: Request, exc: BudgetError):
    if isinstance(exc, NotFoundError):
        logger.warning("%s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Requested-With"],
)
app.add_middleware(SecurityHeadersMiddleware)
# Request timing + X-Request-ID must be outermost so it wraps all other middleware
app.add_middleware(RequestTimingMiddleware)

# Routers
from budgeteer.api.catalog_routes import router as catalog_router  # noqa: E402
from budgeteer.api.project_routes import router as project_router  # noqa: E402
from budgeteer.api.estimate_routes import router as estimate_router  # noqa: E402
from budgeteer.api.financial_routes import router as financial_router  # noqa: E402

app.include_router(catalog_router)
app.include_router(project_router)
app.include_router(estimate_router)
app.include_router(financial_router)


@app.get("/health")
async def health_check():
    return {
        "status": "active",
        "version": app.version,
        "db_configured": config.DATABASE_CONFIGURED,
        "exclusive_approval": config.EXCLUSIVE_APPROVAL,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("budgeteer.main:app", host="0.0.0.0", port=8000, reload=True)
