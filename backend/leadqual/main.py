import logging
from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from leadqual.config import settings
from leadqual.database import Base, engine, get_db
from leadqual.api.deps import get_llm_gateway
from leadqual.services.llm_gateway import LLMGateway

from leadqual.api import (
    leads,
    agent,
    calls,
    websocket,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("leadqual.main")

app = FastAPI(title="Lead Qualification CRM Backend", version="1.0.0")


@app.on_event("startup")
async def startup_event():
    logger.info("Lead Qualification Backend Starting...")

    # Validate configuration (don't raise in dev mode)
    from leadqual.config import validate_config, ConfigValidationError

    try:
        result = validate_config(raise_on_error=settings.ENVIRONMENT == "production")
        for warning in result.get("warnings", []):
            logger.warning(f"Config warning: {warning}")
        if result.get("errors"):
            for error in result["errors"]:
                logger.error(f"Config error: {error}")
    except ConfigValidationError as e:
        logger.critical(f"FATAL: {e}")
        raise SystemExit(1)

    # Create database tables
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created/verified")

    logger.info("Lead Qualification Backend Started")


@app.on_event("shutdown")
async def shutdown_event():
    """Hang up any live calls and close upstream clients."""
    logger.info("Lead Qualification Backend Shutting Down...")

    try:
        from leadqual.agents.call_lifecycle import call_registry
        ended = await call_registry.end_all()
        if ended > 0:
            logger.info(f"Ended {ended} active calls")
    except Exception as e:
        logger.error(f"Error ending active calls: {e}")

    try:
        from leadqual.api.deps import get_elevenlabs_service
        if get_elevenlabs_service.cache_info().currsize:
            await get_elevenlabs_service().aclose()
        if get_llm_gateway.cache_info().currsize:
            await get_llm_gateway().aclose()
    except Exception as e:
        logger.error(f"Error closing upstream clients: {e}")

    logger.info("Lead Qualification Backend Shutdown Complete")


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(leads.router)
app.include_router(agent.router)
app.include_router(calls.router)
app.include_router(websocket.router)


@app.get("/")
async def root():
    return {"message": "Lead Qualification CRM API", "status": "running", "version": "1.0.0"}


@app.get("/health")
async def health(
    db: Session = Depends(get_db),
    gateway: LLMGateway = Depends(get_llm_gateway),
):
    """
    Health check endpoint.

    Returns database connectivity, configuration status, active calls and
    open change-feed sockets.
    """
    from datetime import datetime, timezone
    from sqlalchemy import text
    from leadqual.config import get_config_status
    from leadqual.agents.call_lifecycle import call_registry

    health_status = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": "1.0.0",
        "checks": {},
    }

    # Database check
    try:
        db.execute(text("SELECT 1"))
        health_status["checks"]["database"] = "ok"
    except Exception as e:
        health_status["checks"]["database"] = f"error: {str(e)[:100]}"
        health_status["status"] = "degraded"

    config_status = get_config_status()
    health_status["checks"]["config"] = config_status
    health_status["checks"]["llm_gateway"] = "enabled" if gateway.is_enabled() else "disabled"

    health_status["checks"]["active_calls"] = call_registry.active_count()
    health_status["checks"]["websocket_connections"] = websocket.get_connection_count()

    # Overall status
    if not config_status.get("database_configured"):
        health_status["status"] = "unhealthy"
    elif not config_status.get("elevenlabs_configured") or not config_status.get("llm_configured"):
        health_status["status"] = "degraded"

    return health_status


@app.get("/health/simple")
async def health_simple():
    """Simple health check for load balancers."""
    return {"status": "ok"}
