"""API router for v1 endpoints."""

from fastapi import APIRouter

from tracker.api import opportunities

router = APIRouter()

# Opportunity schedule: call dates, CBC dates and CBC reminder tasks
router.include_router(opportunities.router)
