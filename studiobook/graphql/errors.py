"""
Maps raised errors onto the code/message pair of failed responses.
"""
from typing import Dict

from sqlalchemy.exc import SQLAlchemyError

from studiobook.core.exceptions import BookingEngineError, InfrastructureError
from studiobook.core.logging_config import get_logger

logger = get_logger("graphql")


def failure(exc: Exception) -> Dict[str, str]:
    """success=False fields for a response built from an exception"""
    if isinstance(exc, BookingEngineError):
        return {"code": exc.code, "message": exc.message}
    if isinstance(exc, SQLAlchemyError):
        logger.error("Storage error: %s", exc)
        return {"code": InfrastructureError.code, "message": "Storage unavailable, please retry"}
    logger.exception("Unexpected error", exc_info=exc)
    return {"code": "ERROR", "message": f"Unexpected error: {str(exc)}"}
