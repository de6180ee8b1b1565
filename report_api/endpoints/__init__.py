"""API endpoints for the report service."""

from fastapi import APIRouter

from .health import router as health_router
from .reports import router as reports_router
from .templates import router as templates_router
from .procedures import router as procedures_router

# Create main API router
api_router = APIRouter()

api_router.include_router(health_router, prefix="/health", tags=["Health"])
api_router.include_router(reports_router, prefix="/reports", tags=["Reports"])
api_router.include_router(templates_router, prefix="/templates", tags=["Report Templates"])
api_router.include_router(procedures_router, prefix="/procedures", tags=["Report Procedures"])

__all__ = ["api_router"]
