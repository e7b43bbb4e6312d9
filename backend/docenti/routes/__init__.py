"""API route registration."""

from fastapi import APIRouter
from .process import router as process_router
from .exams import router as exams_router


def register_all_routes(api_router: APIRouter):
    """Include all route modules on the main API router."""
    api_router.include_router(process_router)
    api_router.include_router(exams_router)
