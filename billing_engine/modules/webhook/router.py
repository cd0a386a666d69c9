"""API Router for webhook ingestion and the dead-letter queue."""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from billing_engine.core.config import settings
from billing_engine.core.database import async_session_maker
from billing_engine.core.redis import get_redis
from billing_engine.modules.billing.unit_of_work import read_committed_uow_factory
from billing_engine.modules.job.queue import CeleryJobQueue, JobQueue
from billing_engine.modules.webhook.gateway import (
    EmptyPayloadError,
    IngestionGateway,
    InvalidSignatureError,
    MalformedEventError,
)
from billing_engine.modules.webhook.replay import (
    EventNotFoundError,
    EventNotReplayableError,
    ReplayEnqueueError,
    ReplayService,
)
from billing_engine.modules.webhook.schemas import (
    DeadLetterEntry,
    DeadLetterListResponse,
    ReplayResponse,
    WebhookAck,
)
from billing_engine.modules.webhook.signature import SignatureVerifier

router = APIRouter(prefix="/webhook", tags=["webhooks"])


async def get_job_queue() -> JobQueue:
    return CeleryJobQueue(await get_redis())


def get_ledger_uow_factory():
    return read_committed_uow_factory(async_session_maker)


def get_ingestion_gateway(
    uow_factory=Depends(get_ledger_uow_factory),
    queue: JobQueue = Depends(get_job_queue),
) -> IngestionGateway:
    return IngestionGateway(
        verifier=SignatureVerifier(settings.WEBHOOK_SIGNING_SECRET),
        uow_factory=uow_factory,
        queue=queue,
    )


def get_replay_service(
    uow_factory=Depends(get_ledger_uow_factory),
    queue: JobQueue = Depends(get_job_queue),
) -> ReplayService:
    return ReplayService(uow_factory=uow_factory, queue=queue)


@router.post("/stripe", response_model=WebhookAck)
async def receive_stripe_webhook(
    request: Request,
    gateway: IngestionGateway = Depends(get_ingestion_gateway),
):
    """Receive a payment provider event.

    Every delivery that passes the signature check is acknowledged, including
    duplicates and event types the pipeline does not act on.
    """
    payload = await request.body()
    signature = request.headers.get(settings.WEBHOOK_SIGNATURE_HEADER)

    try:
        await gateway.ingest(payload, signature)
    except InvalidSignatureError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    except (EmptyPayloadError, MalformedEventError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return WebhookAck(received=True)


@router.get("/dlq", response_model=DeadLetterListResponse)
async def list_dead_letter_queue(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: ReplayService = Depends(get_replay_service),
):
    """List FAILED webhook events, most recent failure first."""
    items, total = await service.list_dead_letters(limit=limit, offset=offset)
    return DeadLetterListResponse(
        items=[DeadLetterEntry.model_validate(item) for item in items],
        total=total,
    )


@router.post("/replay/{event_id}", response_model=ReplayResponse)
async def replay_webhook_event(
    event_id: str,
    service: ReplayService = Depends(get_replay_service),
):
    """Re-enqueue a FAILED webhook event from its stored payload."""
    try:
        job_id = await service.replay(event_id)
    except EventNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except EventNotReplayableError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ReplayEnqueueError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return ReplayResponse(event_id=event_id, job_id=job_id, status="PENDING")
