"""Liveness and dependency checks"""
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bookflow.config.database import get_db
from bookflow.config.redis import redis_status

health_router = APIRouter()


@health_router.get("")
async def health_check():
    return {"status": "healthy", "service": "bookflow-api"}


@health_router.get("/detailed")
async def detailed_health_check(db: Session = Depends(get_db)):
    """
    Database and Redis (Celery broker host) reachability.

    Webhooks cannot enqueue work without Redis, so a degraded result means
    payment and WhatsApp events are being rejected with 500.
    """
    try:
        db.execute(text("SELECT 1"))
        database = "healthy"
    except SQLAlchemyError as e:
        database = f"unhealthy: {str(e)[:200]}"

    checks = {"api": "healthy", "database": database, "redis": await redis_status()}
    checks["overall"] = "healthy" if all(v == "healthy" for v in checks.values()) else "degraded"
    return checks
