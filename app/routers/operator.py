"""Operator (admin dashboard) endpoints for a running session."""

from fastapi import APIRouter, Depends

from app.routers.widget import get_conversation, session_state
from app.schemas.api import (
    AgentMessageRequest,
    CloseSessionResponse,
    MessageResponse,
    OperatorModeRequest,
    SessionStateResponse,
)
from app.services.conversation_session import ConversationSession

router = APIRouter(prefix="/operator", tags=["operator"])


@router.post("/sessions/{session_id}/mode", response_model=SessionStateResponse)
async def set_operator_mode(request: OperatorModeRequest, conversation: ConversationSession = Depends(get_conversation)):
    await conversation.set_operator_mode(request.mode)
    return session_state(conversation)


@router.post("/sessions/{session_id}/online", response_model=SessionStateResponse)
async def toggle_online(conversation: ConversationSession = Depends(get_conversation)):
    await conversation.toggle_online_status()
    return session_state(conversation)


@router.post("/sessions/{session_id}/messages", response_model=MessageResponse)
async def agent_reply(request: AgentMessageRequest, conversation: ConversationSession = Depends(get_conversation)):
    message = await conversation.submit_agent_message(request.content)
    return MessageResponse(accepted=message is not None, message=message)


@router.post("/sessions/{session_id}/close", response_model=CloseSessionResponse)
async def close_session(conversation: ConversationSession = Depends(get_conversation)):
    result = await conversation.close()
    if result.ok:
        return CloseSessionResponse(success=True, status=conversation.status)
    return CloseSessionResponse(success=False, status=conversation.status, message=result.error)
