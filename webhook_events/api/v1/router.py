"""
Main API router for version 1.
"""

from fastapi import APIRouter

from webhook_events.api.v1.endpoints import webhooks

api_router = APIRouter()

api_router.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
