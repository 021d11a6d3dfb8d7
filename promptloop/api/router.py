from fastapi import APIRouter

from promptloop.api.cron import router as cron_router

api_router = APIRouter()

# API routes at /api/*
api_router.include_router(cron_router, prefix="/api", tags=["cron"])
