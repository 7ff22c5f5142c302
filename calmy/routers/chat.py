from typing import List
from fastapi import APIRouter, HTTPException, Depends, Query, Request, status
from fastapi.responses import StreamingResponse
from pydantic import ValidationError
import logging

from calmy.core.dependencies import get_chat_gateway
from calmy.core.exceptions import AuthenticationError, ChatGatewayError
from calmy.schemas.chat import ChatRequest, HistoryMessage
from calmy.services.chat_gateway import ChatGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])

MISSING_FIELDS_DETAIL = "Message, userId, and sessionId are required"
HISTORY_MISSING_FIELDS_DETAIL = "sessionId and userId are required"
UNAUTHORIZED_DETAIL = "Unauthorized"
UNAVAILABLE_DETAIL = "Assistant is unavailable right now."


def missing_fields_detail(path: str) -> str:
    """The 400 text for a request to `path` that lacks required fields."""
    if path == f"{router.prefix}/history":
        return HISTORY_MISSING_FIELDS_DETAIL
    return MISSING_FIELDS_DETAIL


async def parse_chat_request(request: Request) -> ChatRequest:
    """Reads the JSON body; any malformed or incomplete body is a 400."""
    try:
        payload = await request.json()
        return ChatRequest.model_validate(payload)
    except (ValueError, ValidationError) as e:
        logger.info(f"Rejected chat request with invalid body: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=MISSING_FIELDS_DETAIL)


async def authenticate(gateway: ChatGateway, request: Request, user_id: str) -> str:
    try:
        return await gateway.authenticate(request.headers.get("Authorization"), user_id)
    except AuthenticationError as e:
        logger.info(f"Rejected unauthenticated chat request: {e}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=UNAUTHORIZED_DETAIL)


@router.post("", summary="Chat with Calmy (streamed plain text)")
async def chat_endpoint(
    request: Request,
    gateway: ChatGateway = Depends(get_chat_gateway),
):
    """
    Streams the assistant's reply to one user message as raw UTF-8 text.
    Both turns are appended to the session's history.
    """
    chat_request = await parse_chat_request(request)
    await authenticate(gateway, request, chat_request.user_id)

    logger.info(f"Received chat message for session {chat_request.session_id} ({len(chat_request.message)} chars)")
    try:
        chunks = await gateway.open_reply(chat_request)
    except ChatGatewayError:
        logger.exception("Error preparing chat reply:")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=UNAVAILABLE_DETAIL)

    return StreamingResponse(chunks, media_type="text/plain; charset=utf-8")


@router.get("/history", response_model=List[HistoryMessage], summary="Messages of one chat session")
async def history_endpoint(
    request: Request,
    session_id: str = Query(..., alias="sessionId", min_length=1),
    user_id: str = Query(..., alias="userId", min_length=1),
    gateway: ChatGateway = Depends(get_chat_gateway),
):
    """
    Returns the persisted messages of the session, oldest first.
    """
    await authenticate(gateway, request, user_id)
    try:
        messages = await gateway.history(user_id, session_id)
    except ChatGatewayError:
        logger.exception("Error loading chat history:")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=UNAVAILABLE_DETAIL)
    return [HistoryMessage.model_validate(msg) for msg in messages]
