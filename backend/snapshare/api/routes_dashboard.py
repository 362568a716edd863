from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from snapshare.api.organizer_auth import OrganizerIdentity, require_organizer
from snapshare.api.routes_auth import OrganizerResponse, organizer_response
from snapshare.domain import dashboard
from snapshare.domain.events.schemas import EventResponse
from snapshare.infra.db import get_db_session

router = APIRouter(prefix="/v1/dashboard", tags=["dashboard"])


class DashboardStatsResponse(BaseModel):
    total_events: int
    active_events: int
    events_this_month: int
    total_photos: int


class DashboardResponse(BaseModel):
    profile: OrganizerResponse
    events: list[EventResponse]
    stats: DashboardStatsResponse


@router.get("", response_model=DashboardResponse)
async def get_dashboard(
    identity: OrganizerIdentity = Depends(require_organizer),
    session: AsyncSession = Depends(get_db_session),
) -> DashboardResponse:
    events, stats = await dashboard.load_dashboard(session, identity.organizer_id)
    return DashboardResponse(
        profile=organizer_response(identity.organizer),
        events=[EventResponse.model_validate(event) for event in events],
        stats=DashboardStatsResponse(
            total_events=stats.total_events,
            active_events=stats.active_events,
            events_this_month=stats.events_this_month,
            total_photos=stats.total_photos,
        ),
    )
