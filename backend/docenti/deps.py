"""
FastAPI dependencies - get_process_service, raise_http.
"""

from fastapi import HTTPException, Request

from .config import logger
from .errors import BadInputError, DocentiError, NotFoundError
from .services.pipeline import ProcessService


def get_process_service(request: Request) -> ProcessService:
    """The ProcessService built at startup and stored on app.state"""
    service = getattr(request.app.state, "process_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Processing service not ready")
    return service


def raise_http(e: Exception):
    """Translate a pipeline error into the matching HTTPException."""
    if isinstance(e, HTTPException):
        raise e
    if isinstance(e, BadInputError):
        raise HTTPException(status_code=400, detail=e.message)
    if isinstance(e, NotFoundError):
        raise HTTPException(status_code=404, detail=e.message)
    if isinstance(e, DocentiError):
        logger.error(f"Pipeline error: {e}")
        raise HTTPException(status_code=500, detail=e.message)
    logger.error(f"Unexpected error: {e}", exc_info=True)
    raise HTTPException(status_code=500, detail=str(e))
