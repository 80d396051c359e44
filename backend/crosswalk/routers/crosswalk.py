"""Crosswalk summary -- /api/v1/crosswalk"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from crosswalk.database import get_session
from crosswalk.schemas.mapping import CrosswalkSummary
from crosswalk.services.crosswalk import crosswalk_summary

router = APIRouter(prefix="/api/v1/crosswalk", tags=["Crosswalk"])


@router.get("/summary", response_model=CrosswalkSummary)
async def get_summary(s: AsyncSession = Depends(get_session)):
    return await crosswalk_summary(s)
