"""
API v1 router combining all v1 endpoints.
"""
from fastapi import APIRouter
from app.api.v1 import grading, health, test_taking

api_router = APIRouter()

# Include all v1 routers
api_router.include_router(health.router, tags=["health"])
api_router.include_router(test_taking.router, prefix="/tests", tags=["test-taking"])
api_router.include_router(grading.router, prefix="/tests", tags=["grading"])
