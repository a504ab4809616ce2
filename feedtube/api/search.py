from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from .. import crud
from ..db import get_session
from ..provider import MetadataProvider
from ..schemas import VideoOut
from .deps import get_provider

router = APIRouter(prefix="/api/search", tags=["search"])


@router.get("", response_model=list[VideoOut])
async def search(
    q: str = Query(..., min_length=1),
    limit: int = Query(20, ge=1, le=50),
    provider: MetadataProvider = Depends(get_provider),
):
    try:
        found = await provider.search(q, limit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    async with get_session() as session:
        watched = await crud.get_watched_among(session, [v.id for v in found])
    return [
        VideoOut(**v.model_dump(), watched=v.id in watched)
        for v in found
    ]
