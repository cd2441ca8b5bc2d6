import uuid
from typing import List

from fastapi import APIRouter, Depends, Request, status

from fanqueue.api.dependencies.auth import get_current_organizer_id, get_current_user_id
from fanqueue.api.dependencies.services import get_queue_manager_service
from fanqueue.exceptions import EntryNotFoundError
from fanqueue.rate_limiter import limiter
from fanqueue.schemas.queue_entry import JoinQueueRequest, QueueEntrySchema, QueueEntryWithEventSchema
from fanqueue.services.queue_manager import QueueManagerService

router = APIRouter()


@router.post("/join", response_model=QueueEntrySchema, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def join_queue(
    request: Request,
    join_in: JoinQueueRequest,
    queue_manager_service: QueueManagerService = Depends(get_queue_manager_service),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    entry = await queue_manager_service.join(join_in.event_id, user_id, payment_intent_id=join_in.payment_intent_id)
    return QueueEntrySchema.model_validate(entry)


@router.get("/mine", response_model=List[QueueEntryWithEventSchema])
async def get_my_entries(
    queue_manager_service: QueueManagerService = Depends(get_queue_manager_service),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    entries = await queue_manager_service.get_user_entries(user_id)
    return [QueueEntryWithEventSchema.model_validate(entry) for entry in entries]


@router.get("/events/{event_id}", response_model=List[QueueEntrySchema])
async def get_event_queue(
    event_id: uuid.UUID,
    queue_manager_service: QueueManagerService = Depends(get_queue_manager_service),
    organizer_id: uuid.UUID = Depends(get_current_organizer_id),
):
    """
    Full queue of an event (everything but cancelled entries), for its organizer.
    """
    entries = await queue_manager_service.get_event_queue(event_id, organizer_id=organizer_id)
    return [QueueEntrySchema.model_validate(entry) for entry in entries]


@router.post("/events/{event_id}/call-next", response_model=QueueEntrySchema)
async def call_next(
    event_id: uuid.UUID,
    queue_manager_service: QueueManagerService = Depends(get_queue_manager_service),
    organizer_id: uuid.UUID = Depends(get_current_organizer_id),
):
    entry = await queue_manager_service.call_next(event_id, organizer_id)
    return QueueEntrySchema.model_validate(entry)


@router.get("/{entry_id}", response_model=QueueEntrySchema)
async def get_entry(
    entry_id: uuid.UUID,
    queue_manager_service: QueueManagerService = Depends(get_queue_manager_service),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    entry = await queue_manager_service.get_entry(entry_id)
    if entry.user_id != user_id:
        raise EntryNotFoundError()
    return QueueEntrySchema.model_validate(entry)


@router.post("/{entry_id}/cancel", response_model=QueueEntrySchema)
async def cancel_entry(
    entry_id: uuid.UUID,
    queue_manager_service: QueueManagerService = Depends(get_queue_manager_service),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    entry = await queue_manager_service.cancel(entry_id, user_id)
    return QueueEntrySchema.model_validate(entry)


@router.post("/{entry_id}/complete", response_model=QueueEntrySchema)
async def complete_entry(
    entry_id: uuid.UUID,
    queue_manager_service: QueueManagerService = Depends(get_queue_manager_service),
    user_id: uuid.UUID = Depends(get_current_user_id),
):
    """
    Organizer marks a called fan as done. Ownership of the event is checked by the queue manager.
    """
    entry = await queue_manager_service.complete(entry_id, user_id)
    return QueueEntrySchema.model_validate(entry)
