"""Direct message REST API router.

Endpoints:
    GET  /messages/unread/count         - Unread counts per peer
    GET  /messages/{peer_id}            - Paginated history (marks fetched inbound messages seen)
    POST /messages/send/{peer_id}       - Send a text and/or media message
    POST /messages/{peer_id}/mark-seen  - Explicitly mark messages from peer as seen

Every endpoint acts on behalf of the authenticated user. Live pushes go
through the DeliveryRouter: the receiver gets ``new-message`` when a
message is sent, and the original sender gets ``messages-seen`` whenever
a fetch or an explicit call transitions their messages to seen.
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import JSONResponse

from app.auth.identity import get_current_user_id
from app.config import get_config
from app.delivery.service import DeliveryRouter, get_delivery
from app.errors import ChatError, to_http_exception
from app.media.router import get_media_service, media_url
from app.media.service import MediaStorageService, is_data_url

from .schemas import MarkSeenRequest, MarkSeenResponse, MessageCreate, UnreadCounts
from .store import MessageStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["messages"])


def get_message_store() -> MessageStore:
    messaging = get_config().messaging
    return MessageStore.get_instance(
        messaging.db_path,
        default_page_size=messaging.default_page_size,
        max_page_size=messaging.max_page_size,
        max_text_length=messaging.max_text_length,
    )


@router.get("/unread/count", response_model=UnreadCounts)
async def unread_count(
    user_id: str = Depends(get_current_user_id),
    store: MessageStore = Depends(get_message_store),
) -> UnreadCounts:
    """Count unseen inbound messages, grouped by sender."""
    return UnreadCounts(counts=store.unread_counts(user_id))


@router.get("/{peer_id}")
async def get_messages(
    peer_id: str,
    cursor: Optional[datetime] = Query(None, description="Return messages created before this time"),
    limit: Optional[int] = Query(None, description="Page size (clamped to the configured maximum)"),
    user_id: str = Depends(get_current_user_id),
    store: MessageStore = Depends(get_message_store),
    delivery: DeliveryRouter = Depends(get_delivery),
) -> JSONResponse:
    """Get one page of the conversation with *peer_id*, newest first.

    Fetching marks the page's unseen messages from the peer as seen and
    pushes a seen receipt to the peer if they are online.

    Example:
        GET /messages/bob?limit=20
        GET /messages/bob?cursor=2026-10-19T12:00:00.123456&limit=20
    """
    page, transitioned = store.page(user_id, peer_id, cursor=cursor, limit=limit)
    logger.debug(
        "[Messages] %s fetched %d message(s) with %s (cursor=%s, hasMore=%s)",
        user_id, len(page.messages), peer_id, cursor, page.hasMore,
    )

    if transitioned:
        await delivery.push_seen_receipt(peer_id, transitioned, reader_id=user_id)

    return JSONResponse(page.model_dump(mode="json"))


@router.post("/send/{peer_id}", status_code=201)
async def send_message(
    request: Request,
    peer_id: str,
    body: MessageCreate,
    user_id: str = Depends(get_current_user_id),
    store: MessageStore = Depends(get_message_store),
    delivery: DeliveryRouter = Depends(get_delivery),
    media_service: MediaStorageService = Depends(get_media_service),
) -> JSONResponse:
    """Send a message to *peer_id*.

    ``media`` may be a base64 ``data:`` URL, which is uploaded to media
    storage first and replaced by its durable URL.

    Returns:
        The created message (201 Created).

    Raises:
        HTTPException 400: If the message is empty or the media is invalid.
    """
    try:
        # Reject before uploading so a bad send leaves no orphan media.
        text, media = store.validate(user_id, peer_id, text=body.text, media=body.media)
        if is_data_url(media or ""):
            record = await media_service.save_data_url(user_id, media)
            media = media_url(request, record.id)

        message = store.append(user_id, peer_id, text=text, media=media)
    except ChatError as e:
        logger.info(f"[Messages] Rejected send from {user_id} to {peer_id}: {e.message}")
        raise to_http_exception(e)

    logger.info(f"[Messages] {user_id} -> {peer_id}: message {message.id}")
    await delivery.push_new_message(message)

    return JSONResponse(message.model_dump(mode="json"), status_code=201)


@router.post("/{peer_id}/mark-seen", response_model=MarkSeenResponse)
async def mark_messages_seen(
    peer_id: str,
    body: Optional[MarkSeenRequest] = Body(None),
    user_id: str = Depends(get_current_user_id),
    store: MessageStore = Depends(get_message_store),
    delivery: DeliveryRouter = Depends(get_delivery),
) -> MarkSeenResponse:
    """Mark messages from *peer_id* to the caller as seen.

    With ``messageIds`` only those messages are considered; otherwise every
    unseen message from the peer. Already-seen or unknown ids are ignored.

    Returns:
        The ids that actually transitioned to seen.
    """
    if body is not None and body.messageIds is not None:
        transitioned = store.mark_seen(body.messageIds, receiver_id=user_id, sender_id=peer_id)
    else:
        transitioned = store.mark_conversation_seen(user_id, peer_id)

    if transitioned:
        await delivery.push_seen_receipt(peer_id, transitioned, reader_id=user_id)

    return MarkSeenResponse(success=True, messageIds=transitioned)
