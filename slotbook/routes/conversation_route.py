import asyncio
import json
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from typing import List, Optional
from slotbook.config import MESSAGE_PAGE_MAX, MESSAGE_PAGE_SIZE
from slotbook.services.conversation_crud import conversation_crud
from slotbook.schemas.conversation_schema import (
    ConversationCreate,
    ConversationWithDetails,
    MarkReadResponse,
    MessageCreate,
    MessageResponse,
)
from slotbook.database import get_db
from slotbook.realtime.hub import Subscriber, conversation_channel, hub, user_channel
from slotbook.security.auth import get_current_user, user_from_token
from slotbook.models.user_model import User
from slotbook.logger import get_logger

conversation_router = APIRouter()
logger = get_logger(__name__)


@conversation_router.post(
    "/conversations", response_model=ConversationWithDetails, status_code=status.HTTP_200_OK
)
def get_or_create_conversation(
    request: ConversationCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Open the conversation with another user, creating it on first contact"""
    try:
        conversation, is_existing = conversation_crud.get_or_create_conversation(
            db, current_user.id, request.participant_id, booking_id=request.booking_id
        )
        return conversation_crud.with_details(db, conversation, current_user.id, is_existing=is_existing)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error opening conversation with {request.participant_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error occurred while opening conversation",
        )


@conversation_router.get(
    "/conversations", response_model=List[ConversationWithDetails], status_code=status.HTTP_200_OK
)
def list_conversations(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return conversation_crud.list_conversations(db, current_user.id)

    except Exception as e:
        logger.error(f"Error listing conversations for {current_user.id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error occurred while fetching conversations",
        )


@conversation_router.get(
    "/conversations/{conversation_id}",
    response_model=ConversationWithDetails,
    status_code=status.HTTP_200_OK,
)
def get_conversation(
    conversation_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        conversation = conversation_crud.get_conversation_for_participant(db, conversation_id, current_user.id)
        return conversation_crud.with_details(db, conversation, current_user.id)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching conversation {conversation_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error occurred while fetching conversation",
        )


@conversation_router.get(
    "/conversations/{conversation_id}/messages",
    response_model=List[MessageResponse],
    status_code=status.HTTP_200_OK,
)
def get_messages(
    conversation_id: str,
    limit: int = Query(MESSAGE_PAGE_SIZE, ge=1, le=MESSAGE_PAGE_MAX, description="Page size"),
    before: Optional[datetime] = Query(None, description="Only messages strictly older than this"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """A page of messages, oldest first"""
    try:
        messages = conversation_crud.get_messages(db, conversation_id, current_user.id, limit=limit, before=before)
        return [MessageResponse.model_validate(m) for m in messages]

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching messages for {conversation_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error occurred while fetching messages",
        )


@conversation_router.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
def send_message(
    conversation_id: str,
    message: MessageCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        db_message = conversation_crud.send_message(db, conversation_id, current_user.id, message.content)
        return MessageResponse.model_validate(db_message)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error sending message in {conversation_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error occurred while sending message",
        )


@conversation_router.post(
    "/conversations/{conversation_id}/read",
    response_model=MarkReadResponse,
    status_code=status.HTTP_200_OK,
)
def mark_as_read(
    conversation_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        marked = conversation_crud.mark_as_read(db, conversation_id, current_user.id)
        return MarkReadResponse(conversation_id=conversation_id, messages_marked_read=marked)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error marking conversation {conversation_id} as read: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error occurred while marking messages as read",
        )


# LIVE DELIVERY


def _authenticate(db: Session, token: Optional[str]) -> Optional[User]:
    if not token:
        return None
    try:
        return user_from_token(db, token)
    except HTTPException:
        return None
    finally:
        db.close()


def _may_join(db: Session, conversation_id: str, user_id: str) -> bool:
    try:
        conversation_crud.get_conversation_for_participant(db, conversation_id, user_id)
        return True
    except HTTPException:
        return False
    finally:
        db.close()


async def _forward_events(websocket: WebSocket, subscriber: Subscriber):
    # Only this task writes to the socket; acks go through the same queue
    while True:
        event = await subscriber.get()
        await websocket.send_json({"event": event["event"], "payload": event["payload"]})


def _reply(subscriber: Subscriber, event: str, payload: dict):
    subscriber.deliver({"event": event, "channel": None, "payload": payload})


@conversation_router.websocket("/ws")
async def chat_socket(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """Subscribe to conversation channels and receive hub events as they happen"""
    user = await run_in_threadpool(_authenticate, db, token)
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    user_id = user.id
    await websocket.accept()
    subscriber = Subscriber(name=f"ws:{user_id}")
    hub.subscribe(subscriber, user_channel(user_id))
    forwarder = asyncio.create_task(_forward_events(websocket, subscriber))
    logger.info(f"WebSocket opened for user {user_id}")

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                _reply(subscriber, "error", {"detail": "Frames must be JSON objects"})
                continue
            if not isinstance(frame, dict):
                _reply(subscriber, "error", {"detail": "Frames must be JSON objects"})
                continue

            action = frame.get("action")
            conversation_id = frame.get("conversation_id")

            if action == "ping":
                _reply(subscriber, "pong", {})
            elif action == "subscribe" and conversation_id:
                if await run_in_threadpool(_may_join, db, str(conversation_id), user_id):
                    hub.subscribe(subscriber, conversation_channel(str(conversation_id)))
                    _reply(subscriber, "subscribed", {"conversation_id": conversation_id})
                else:
                    logger.warning(f"User {user_id} refused subscription to conversation {conversation_id}")
                    _reply(subscriber, "error", {"detail": "Not a participant in this conversation"})
            elif action == "unsubscribe" and conversation_id:
                hub.unsubscribe(subscriber, conversation_channel(str(conversation_id)))
                _reply(subscriber, "unsubscribed", {"conversation_id": conversation_id})
            else:
                _reply(subscriber, "error", {"detail": f"Unknown action: {action!r}"})

    except WebSocketDisconnect:
        logger.info(f"WebSocket closed for user {user_id}")
    finally:
        hub.unsubscribe_all(subscriber)
        forwarder.cancel()
