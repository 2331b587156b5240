"""
Round entry endpoints
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from competition_core.core.config import Settings, get_settings
from competition_core.db.session import get_db
from competition_core.models.enums import ResubmissionPolicy
from competition_core.services.entries import list_entries, submit_entry

router = APIRouter()


class EntrySubmit(BaseModel):
    participant_id: UUID
    post_id: UUID
    policy: Optional[ResubmissionPolicy] = None


@router.post("/rounds/{round_id}/entries")
async def submit_entry_endpoint(
    round_id: UUID,
    payload: EntrySubmit,
    response: Response,
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings)
):
    """
    Enter a post into a round.

    201 for a new entry, 200 when an existing entry was kept or updated.
    """
    entry, created = await submit_entry(
        session,
        participant_id=payload.participant_id,
        round_id=round_id,
        post_id=payload.post_id,
        policy=payload.policy,
        settings=settings,
    )
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return {**entry.to_dict(), "created": created}


@router.get("/rounds/{round_id}/entries")
async def list_entries_endpoint(
    round_id: UUID,
    qualified: Optional[bool] = None,
    visible_only: bool = False,
    include_posts: bool = False,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_db)
):
    entries = await list_entries(
        session,
        round_id,
        qualified=qualified,
        visible_only=visible_only,
        include_posts=include_posts,
        limit=limit,
        offset=offset,
    )
    return {"entries": entries, "count": len(entries), "limit": limit, "offset": offset}
