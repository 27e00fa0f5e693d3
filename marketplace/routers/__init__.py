"""API routers for the marketplace order service."""
from fastapi import APIRouter

from . import disputes, health, orders, products, users


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(users.router)
    api_router.include_router(products.router)
    api_router.include_router(orders.router)
    api_router.include_router(disputes.router)
    return api_router
