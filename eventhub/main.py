import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from eventhub.core import config
from eventhub.core.errors import EntitlementError
from eventhub.core.logging_config import setup_logging
from eventhub.api.routes import subscriptions, billing_webhook, health

setup_logging(config.LOG_LEVEL, config.LOG_DIR)
logger = logging.getLogger(__name__)


# ============================================
# ✅ FASTAPI APP INIT
# ============================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    if config.RUN_MIGRATIONS:
        from eventhub.db.migrate import run_migrations
        run_migrations()
    yield


app = FastAPI(title="EventHub API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type"],
)


# ============================================
# ✅ ERROR MAPPING
# ============================================

@app.exception_handler(EntitlementError)
async def entitlement_error_handler(request: Request, exc: EntitlementError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code}: path={request.url.path}, detail={exc.message}")
    else:
        logger.info(f"{exc.code}: path={request.url.path}, detail={exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ============================================
# ✅ REGISTER ALL ROUTERS
# ============================================

app.include_router(billing_webhook.router)
app.include_router(subscriptions.router)
app.include_router(health.router)


@app.get("/")
def root():
    return {"status": "EventHub API running"}
