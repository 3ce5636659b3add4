"""API v1 router configuration."""

from fastapi import APIRouter

from clinic_scheduler.api.v1.endpoints import appointments, health, queue

api_router = APIRouter()

api_router.include_router(health.router, tags=["Health"])
api_router.include_router(appointments.router, prefix="/appointments", tags=["Appointments"])
api_router.include_router(queue.router, prefix="/queue", tags=["Queue"])
