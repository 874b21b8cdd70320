"""Visitor-facing widget endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.schemas.api import (
    MessageResponse,
    SessionStateResponse,
    StartSessionRequest,
    VisitorMessageRequest,
)
from app.schemas.widget import ConfigurationError
from app.services.conversation_session import ConversationSession
from app.services.session_registry import SessionRegistry

router = APIRouter(prefix="/widget", tags=["widget"])


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def get_conversation(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> ConversationSession:
    conversation = registry.get(session_id)
    if conversation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return conversation


def session_state(conversation: ConversationSession) -> SessionStateResponse:
    return SessionStateResponse(
        session_id=conversation.session_id,
        tenant_id=conversation.tenant_id,
        status=conversation.status,
        is_open=conversation.is_open,
        is_typing=conversation.is_typing,
        has_unread=conversation.has_unread,
        settings=conversation.settings,
        messages=conversation.messages,
    )


@router.post("/sessions", response_model=SessionStateResponse)
async def start_session(request: StartSessionRequest, registry: SessionRegistry = Depends(get_registry)):
    """Start or resume the visitor's session for a tenant."""
    raw_config = request.model_dump(exclude={"visitor_id"}, exclude_none=True)
    try:
        conversation = await registry.open(raw_config, request.visitor_id)
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return session_state(conversation)


@router.get("/sessions/{session_id}", response_model=SessionStateResponse)
async def get_session_state(conversation: ConversationSession = Depends(get_conversation)):
    return session_state(conversation)


@router.post("/sessions/{session_id}/messages", response_model=MessageResponse)
async def submit_message(request: VisitorMessageRequest, conversation: ConversationSession = Depends(get_conversation)):
    """Visitor message. The reply is produced in the background; poll the session state."""
    message = await conversation.submit_visitor_message(request.content)
    return MessageResponse(accepted=message is not None, message=message)


@router.post("/sessions/{session_id}/open", response_model=SessionStateResponse)
async def open_widget(conversation: ConversationSession = Depends(get_conversation)):
    await conversation.open_widget()
    return session_state(conversation)


@router.post("/sessions/{session_id}/close", response_model=SessionStateResponse)
async def close_widget(conversation: ConversationSession = Depends(get_conversation)):
    conversation.close_widget()
    return session_state(conversation)


@router.post("/sessions/{session_id}/acknowledge", response_model=SessionStateResponse)
async def acknowledge(conversation: ConversationSession = Depends(get_conversation)):
    conversation.acknowledge()
    return session_state(conversation)
