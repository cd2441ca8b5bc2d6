import uuid
from typing import List

from fastapi import APIRouter, Depends, Request, status

from fanqueue.api.dependencies.auth import get_current_organizer_id, get_current_user_id
from fanqueue.api.dependencies.services import get_event_service
from fanqueue.models import Event
from fanqueue.rate_limiter import limiter
from fanqueue.schemas.event import EventCreate, EventSchema, EventUpdate, EventWithStatsSchema
from fanqueue.services.event_service import EventService

router = APIRouter()


def with_stats(event: Event, queue_count: int) -> EventWithStatsSchema:
    return EventWithStatsSchema(
        **EventSchema.model_validate(event).model_dump(),
        current_queue_count=queue_count,
        available_slots=max(event.max_capacity - queue_count, 0),
    )


@router.post("/", response_model=EventSchema, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def create_event(
    request: Request,
    event_in: EventCreate,
    event_service: EventService = Depends(get_event_service),
    organizer_id: uuid.UUID = Depends(get_current_organizer_id),
):
    event = await event_service.create_event(organizer_id, event_in)
    return EventSchema.model_validate(event)


@router.get("/active", response_model=List[EventWithStatsSchema])
async def list_active_events(
    event_service: EventService = Depends(get_event_service),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    return [with_stats(event, count) for event, count in await event_service.list_active_events()]


@router.get("/mine", response_model=List[EventWithStatsSchema])
async def list_my_events(
    event_service: EventService = Depends(get_event_service),
    organizer_id: uuid.UUID = Depends(get_current_organizer_id),
):
    return [with_stats(event, count) for event, count in await event_service.list_organizer_events(organizer_id)]


@router.get("/code/{event_code}", response_model=EventWithStatsSchema)
async def get_event_by_code(
    event_code: str,
    event_service: EventService = Depends(get_event_service),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    """
    Look up an event by the short code fans type in at the venue.
    """
    return with_stats(*await event_service.get_event_by_code(event_code))


@router.get("/{event_id}", response_model=EventWithStatsSchema)
async def get_event(
    event_id: uuid.UUID,
    event_service: EventService = Depends(get_event_service),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    return with_stats(*await event_service.get_event(event_id))


@router.patch("/{event_id}", response_model=EventSchema)
async def update_event(
    event_id: uuid.UUID,
    event_in: EventUpdate,
    event_service: EventService = Depends(get_event_service),
    organizer_id: uuid.UUID = Depends(get_current_organizer_id),
):
    event = await event_service.update_event(event_id, organizer_id, event_in)
    return EventSchema.model_validate(event)

