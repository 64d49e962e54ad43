from fastapi import APIRouter

from app.api.v1 import admin, approvals, internal, webhooks

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(approvals.router)
api_router.include_router(webhooks.router)
api_router.include_router(internal.router)
api_router.include_router(admin.router)
