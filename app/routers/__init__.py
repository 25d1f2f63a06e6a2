"""API routers for the bill lifecycle backend."""
from fastapi import APIRouter

from . import apikeys, bills, health, notifications, payment_terms, side_effects, users, views


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(users.router)
    api_router.include_router(apikeys.router)
    # Views before bills so /bills/views/* never reaches the {bill_id} routes.
    api_router.include_router(views.router)
    api_router.include_router(bills.router)
    api_router.include_router(notifications.router)
    api_router.include_router(payment_terms.router)
    api_router.include_router(side_effects.router)
    return api_router
