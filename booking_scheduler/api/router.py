from fastapi import APIRouter

from booking_scheduler.api.scheduler import router as scheduler_router

api_router = APIRouter()

# API routes at /api/*
api_router.include_router(scheduler_router, prefix="/api", tags=["scheduler"])
