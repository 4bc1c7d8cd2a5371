from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from aigo.api.errors import (
    INVALID_JSON,
    INVALID_REQUEST,
    MISSING_MESSAGE,
    ApiError,
    install_error_handlers,
)
from aigo.chat_agent import ChatAgent
from aigo.streaming.publisher import AGENT_INVOCATION_ERROR, StreamPublisher
from utils.logger import get_logger

logger = get_logger(__name__)

NDJSON_MEDIA_TYPE = "application/x-ndjson"


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    history: List[Dict[str, Any]] = Field(default_factory=list)
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    stream: bool = False


async def _parse_chat_request(request: Request) -> ChatRequest:
    try:
        body = await request.json()
    except ValueError as exc:
        raise ApiError.bad_request("Invalid JSON in request body", INVALID_JSON) from exc

    if not isinstance(body, dict) or not isinstance(body.get("message"), str) or not body["message"]:
        raise ApiError.bad_request("Message is required and must be a string", MISSING_MESSAGE)

    try:
        return ChatRequest.model_validate(body)
    except ValidationError as exc:
        raise ApiError.bad_request("Invalid request body", INVALID_REQUEST, details=exc.errors(include_url=False, include_context=False)) from exc


async def _ndjson(publisher: StreamPublisher, request: Request, cancel_event: asyncio.Event) -> AsyncIterator[bytes]:
    async for chunk in publisher.publish():
        if await request.is_disconnected():
            logger.info("client_disconnected", path=request.url.path)
            cancel_event.set()
        yield chunk


def create_app(agent: ChatAgent) -> FastAPI:
    app = FastAPI(title="AIGO Agent")
    install_error_handlers(app)

    @app.post("/api/chat")
    async def chat(request: Request):
        body = await _parse_chat_request(request)
        logger.info("chat_request", session_id=body.session_id, stream=body.stream, history_len=len(body.history))

        if body.stream:
            cancel_event = asyncio.Event()
            publisher = agent.stream(body.message, body.history, cancel_event=cancel_event)
            return StreamingResponse(
                _ndjson(publisher, request, cancel_event),
                media_type=NDJSON_MEDIA_TYPE,
                headers={"Cache-Control": "no-cache"},
            )

        try:
            result = await agent.solve(body.message, body.history)
        except Exception as exc:
            logger.exception("agent_invocation_failed", session_id=body.session_id)
            raise ApiError.internal(
                f"Agent invocation failed: {exc}",
                AGENT_INVOCATION_ERROR,
                details={"originalError": str(exc)},
            ) from exc
        return result.to_dict()

    @app.get("/api/tools")
    async def list_tools():
        return {
            "tools": [
                {"name": tool.name, "description": tool.description, "parameters": tool.parameters}
                for tool in agent.tools.all()
            ]
        }

    return app
