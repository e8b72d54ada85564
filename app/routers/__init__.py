"""API routers for the HubX payments backend."""
from fastapi import APIRouter

from . import coupons, health, papers, payments


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(payments.router)
    api_router.include_router(coupons.router)
    api_router.include_router(papers.router)
    return api_router
