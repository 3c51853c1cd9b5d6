"""API v1 router aggregation"""
from fastapi import APIRouter

from crowdfund.api.v1 import proposals

api_router = APIRouter()

api_router.include_router(proposals.router, prefix="/proposals", tags=["Proposals"])
