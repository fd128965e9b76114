"""
FastAPI application factory.

Thin inbound adapters around the TurnOrchestrator:
- POST /chat: direct chat endpoint
- POST /webhook/line (also /webhook): LINE webhook, replies relayed through LineChannel
- /api/sessions: admin view of stored sessions

The orchestrator and channel live on ``app.state``; nothing is module-global.
"""

import base64
import hashlib
import hmac
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import httpx
import structlog
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .. import __version__
from ..agent import TurnOrchestrator, TurnResult, create_orchestrator
from ..channels import BaseChannel, LineChannel, OutgoingMessage
from ..channels.line import parse_line_events
from ..config import Settings, get_settings
from ..exceptions import ChatAgentError, ErrorKind

logger = structlog.get_logger()

EMPTY_REPLY_MESSAGE = "Sorry, I did not understand that."

STATUS_CODES = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.PERSISTENCE: 503,
    ErrorKind.UPSTREAM: 502,
}


class ChatRequest(BaseModel):
    """Body of POST /chat."""
    message: str | None = None
    session_id: str = "default"


class InitializeRequest(BaseModel):
    """Body of PUT /api/sessions/{session_id}."""
    system_instruction: str | None = None


def _error_response(result: TurnResult) -> JSONResponse:
    status_code = STATUS_CODES[result.error.kind] if result.error else 500
    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "message": result.message},
    )


def _verify_line_signature(secret: str, body: bytes, signature: str | None) -> bool:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("utf-8")
    return signature is not None and hmac.compare_digest(expected, signature)


def create_app(
    settings: Settings | None = None,
    orchestrator: TurnOrchestrator | None = None,
    channel: BaseChannel | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Build the orchestrator and channel unless they were injected."""
        owns_orchestrator = app.state.orchestrator is None
        owns_channel = app.state.channel is None

        if owns_orchestrator:
            app.state.orchestrator = await create_orchestrator(settings)

        if owns_channel and settings.line_channel_access_token:
            app.state.channel = LineChannel(
                settings.line_channel_access_token,
                base_url=settings.line_api_base_url,
            )

        yield

        if owns_channel and app.state.channel is not None:
            await app.state.channel.close()
        if owns_orchestrator:
            await app.state.orchestrator.store.backend.close()

        logger.info("Application shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        description="Conversational session manager with LLM replies",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.state.channel = channel

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def get_orchestrator(request: Request) -> TurnOrchestrator:
        orchestrator = request.app.state.orchestrator
        if orchestrator is None:
            raise HTTPException(status_code=500, detail="Service not ready")
        return orchestrator

    def require_admin(authorization: str = Header(...)) -> None:
        expected = f"Bearer {settings.admin_password}"
        if not hmac.compare_digest(authorization, expected):
            raise HTTPException(status_code=401, detail="Invalid authorization")

    async def run_turn(orchestrator: TurnOrchestrator, session_id: str, text: str) -> TurnResult:
        try:
            return await orchestrator.send_message(session_id, text)
        except ChatAgentError as e:
            logger.error("Turn rejected", session_id=session_id, kind=e.kind.value, error=str(e))
            return TurnResult.from_exception(e, orchestrator.fallback_message)

    # ------------------------------------------------------------------ #
    # Health
    # ------------------------------------------------------------------ #
    @app.get("/api/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        orchestrator = request.app.state.orchestrator
        return {
            "status": "healthy",
            "version": __version__,
            "backend": orchestrator.store.backend.name if orchestrator else None,
            "provider": orchestrator.llm.provider_name if orchestrator else None,
            "formatting_strategy": settings.formatting_strategy,
            "line_configured": request.app.state.channel is not None,
        }

    # ------------------------------------------------------------------ #
    # Chat
    # ------------------------------------------------------------------ #
    @app.post("/chat")
    async def chat(
        body: ChatRequest,
        orchestrator: TurnOrchestrator = Depends(get_orchestrator),
    ):
        """Send one message and return the reply."""
        if not body.message or not body.message.strip():
            return JSONResponse(
                status_code=400,
                content={"status": "error", "message": "No message provided"},
            )

        result = await run_turn(orchestrator, body.session_id, body.message)
        if not result.ok:
            return _error_response(result)

        return {
            "status": "success",
            "response": result.message or EMPTY_REPLY_MESSAGE,
        }

    # ------------------------------------------------------------------ #
    # LINE Webhook
    # ------------------------------------------------------------------ #
    @app.post("/webhook")
    @app.post("/webhook/line")
    async def line_webhook(
        request: Request,
        x_line_signature: str | None = Header(None),
        orchestrator: TurnOrchestrator = Depends(get_orchestrator),
    ):
        """Handle LINE webhook events and relay the replies."""
        body = await request.body()

        if settings.line_channel_secret:
            if not _verify_line_signature(settings.line_channel_secret, body, x_line_signature):
                raise HTTPException(status_code=401, detail="Invalid signature")

        try:
            payload: dict[str, Any] = json.loads(body or b"{}")
        except json.JSONDecodeError:
            raise HTTPException(status_code=400, detail="Invalid JSON payload")

        channel: BaseChannel | None = request.app.state.channel
        messages = channel.parse_webhook(payload) if channel else parse_line_events(payload)

        for message in messages:
            if message.text.strip():
                result = await run_turn(orchestrator, message.session_id, message.text)
                reply = result.message or EMPTY_REPLY_MESSAGE
            else:
                reply = EMPTY_REPLY_MESSAGE

            if channel is None:
                logger.warning("LINE channel not configured; reply not relayed", session_id=message.session_id)
                continue

            try:
                await channel.send_message(OutgoingMessage(text=reply, reply_token=message.reply_token))
            except (httpx.HTTPError, ValueError) as e:
                logger.error("Failed to relay reply", session_id=message.session_id, error=str(e))

        return {"status": "success", "message": "Webhook received"}

    # ------------------------------------------------------------------ #
    # Session administration
    # ------------------------------------------------------------------ #
    @app.get("/api/sessions", dependencies=[Depends(require_admin)])
    async def list_sessions(orchestrator: TurnOrchestrator = Depends(get_orchestrator)):
        """List stored session ids."""
        try:
            sessions = await orchestrator.store.list_sessions()
        except ChatAgentError as e:
            return _error_response(TurnResult.from_exception(e, orchestrator.fallback_message))
        return {"sessions": sessions, "count": len(sessions)}

    @app.get("/api/sessions/{session_id}", dependencies=[Depends(require_admin)])
    async def get_session(
        session_id: str,
        orchestrator: TurnOrchestrator = Depends(get_orchestrator),
    ):
        """Return a session's history."""
        try:
            session = await orchestrator.store.get_session(session_id)
        except ChatAgentError as e:
            return _error_response(TurnResult.from_exception(e, orchestrator.fallback_message))
        return {
            "id": session.id,
            "system_instruction": session.system_instruction,
            "retention_limit": session.retention_limit,
            "history": [m.to_dict() for m in session.history],
        }

    @app.put("/api/sessions/{session_id}", dependencies=[Depends(require_admin)])
    async def initialize_session(
        session_id: str,
        body: InitializeRequest,
        orchestrator: TurnOrchestrator = Depends(get_orchestrator),
    ):
        """Create or reset a session with an optional instruction."""
        try:
            session = await orchestrator.store.initialize(session_id, body.system_instruction)
        except ChatAgentError as e:
            return _error_response(TurnResult.from_exception(e, orchestrator.fallback_message))
        return {"id": session.id, "system_instruction": session.system_instruction}

    @app.delete("/api/sessions/{session_id}/history", dependencies=[Depends(require_admin)])
    async def clear_session(
        session_id: str,
        orchestrator: TurnOrchestrator = Depends(get_orchestrator),
    ):
        """Reset a session to just its system instruction."""
        try:
            session = await orchestrator.store.clear(session_id)
        except ChatAgentError as e:
            return _error_response(TurnResult.from_exception(e, orchestrator.fallback_message))
        return {"id": session.id, "message_count": session.message_count}

    return app
