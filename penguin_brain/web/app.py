"""FastAPI app exposing the Penguin chat turn as a server-sent event stream."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from penguin_brain.assistant.orchestrator import ChatRequest
from penguin_brain.errors import AuthConfigError, ValidationError
from penguin_brain.log_setup import setup_logging
from penguin_brain.runtime import AppRuntime, create_runtime
from penguin_brain.security.rate_limit import RATE_LIMIT_MESSAGE, client_ip_from_headers

DEFAULT_HOST = os.getenv("PENGUIN_WEB_HOST", "0.0.0.0")
DEFAULT_PORT = int(os.getenv("PENGUIN_WEB_PORT", "3210"))

setup_logging()
logger = logging.getLogger("penguin_brain.web")

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
    "Connection": "keep-alive",
}


class ChatPayload(BaseModel):
    """Payload for chat requests; field names follow the browser client."""

    model_config = ConfigDict(populate_by_name=True)

    message: Any = Field(default=None, description="User message")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    company_id: Optional[str] = Field(default=None, alias="companyId")
    user_language: Optional[str] = Field(default="en", alias="userLanguage")
    user_timezone: Optional[str] = Field(default=None, alias="userTimezone")
    user_currency: Optional[str] = Field(default=None, alias="userCurrency")
    user_industry: Optional[str] = Field(default=None, alias="userIndustry")

    def to_chat_request(self) -> ChatRequest:
        return ChatRequest(
            message=self.message,
            user_id=self.user_id or "",
            company_id=self.company_id or "",
            conversation_id=self.conversation_id,
            language=self.user_language or "en",
            timezone=self.user_timezone,
            currency=self.user_currency,
            industry=self.user_industry,
        )


class HealthResponse(BaseModel):
    status: str


async def require_token(authorization: Optional[str] = Header(default=None)) -> None:
    """Simple bearer token guard; skip if no token configured."""

    api_token = os.getenv("PENGUIN_WEB_TOKEN")
    if not api_token:
        return
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or token != api_token:
        raise HTTPException(status_code=401, detail="Invalid token")


def create_app(runtime: Optional[AppRuntime] = None) -> FastAPI:
    runtime = runtime or create_runtime()
    assistant = runtime.assistant
    app = FastAPI(title="Penguin Brain Chat", version="0.1.0")
    app.state.runtime = runtime

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": "Invalid request body"})

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.post("/chat")
    async def chat(payload: ChatPayload, request: Request, _: None = Depends(require_token)):
        fallback = request.client.host if request.client else None
        client_ip = client_ip_from_headers(request.headers, fallback)
        if not runtime.rate_limiter.allow(client_ip):
            logger.warning("Rate limit exceeded", extra={"client_ip": client_ip})
            return JSONResponse(status_code=429, content={"error": RATE_LIMIT_MESSAGE})

        try:
            prepared = await asyncio.to_thread(assistant.prepare_turn, payload.to_chat_request())
        except AuthConfigError as exc:
            logger.warning("LLM connection unavailable", extra={"error_code": exc.code})
            return JSONResponse(status_code=exc.status_code, content=exc.to_payload())
        except ValidationError as exc:
            logger.info("Rejected chat request: %s", exc, extra={"client_ip": client_ip})
            return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})

        # Starlette iterates the blocking generator on a worker thread.
        return StreamingResponse(
            assistant.stream_turn(prepared),
            media_type="text/event-stream",
            headers=STREAM_HEADERS,
        )

    return app


app = create_app()


__all__ = ["ChatPayload", "DEFAULT_HOST", "DEFAULT_PORT", "app", "create_app", "require_token"]
