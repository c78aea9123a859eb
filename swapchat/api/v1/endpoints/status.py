"""
Status and health check endpoints.

WHAT: Health monitoring for the data service and local database
WHY: Quick diagnostics for clients and ops
HOW: FastAPI endpoints calling data service ping and DB ping
"""

from fastapi import APIRouter

from ....core.chat_session import chat_sessions
from ....core.config import settings
from ....core.database import ping_database
from ....transport.factory import get_data_service
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


async def _service_status() -> dict:
    try:
        service = get_data_service()
        status = await service.ping()
        return {
            "available": status.available,
            "mode": status.mode,
            "base_url": status.base_url,
            "error": status.error,
        }
    except Exception as e:
        logger.error(f"Failed to get data service status: {e}")
        return {
            "available": False,
            "mode": settings.DATA_SERVICE_MODE,
            "base_url": None,
            "error": str(e),
        }


@router.get("/status")
async def service_status():
    """
    Check data service status.

    Returns:
        JSON with data service status, database status (local mode) and
        the number of active chat sessions
    """
    data_service = await _service_status()
    database = None
    engine = getattr(get_data_service(), "engine", None) if data_service["available"] else None
    if engine is not None:
        database = ping_database(engine)

    return {
        "data_service": data_service,
        "database": database,
        "active_sessions": chat_sessions.active_count(),
    }


@router.get("/health")
async def health_check():
    """
    Overall application health check.

    Returns:
        JSON with overall health status
    """
    data_service = await _service_status()
    return {
        "status": "healthy" if data_service["available"] else "degraded",
        "version": settings.APP_VERSION,
        "app_name": settings.APP_NAME,
        "components": {
            "data_service": {
                "available": data_service["available"],
                "mode": data_service["mode"],
            }
        },
    }
