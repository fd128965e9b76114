"""
Turn orchestration: one user message in, one generated reply out.

A turn runs through these states:

    Idle -> UserAppended -> Formatting -> Generating
         -> AssistantAppended            (reply generated)
         -> Idle, user message pending   (generation failed)

The user message is recorded before generation and is never rolled back.
Only genuine generated replies are stored as assistant messages; a failed
or cancelled generation stores nothing and returns the fallback text.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

from ..config import DEFAULT_FALLBACK_MESSAGE, Settings, get_settings
from ..exceptions import ChatAgentError, ErrorKind, PersistenceError, UpstreamError
from ..history import MessageRole
from ..llm import BaseLLM, GenerationRequest, create_llm
from ..storage import DurableBackend, PersistenceBackend, TranscriptRecorder, create_backend
from .formatting import HistoryFormatter
from .session import KeyedLock, SessionStore

logger = structlog.get_logger()


class TurnStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class TurnError:
    """What went wrong, for logging and for deciding whether to retry."""

    kind: ErrorKind
    detail: str

    @property
    def retryable(self) -> bool:
        return self.kind == ErrorKind.UPSTREAM


@dataclass(frozen=True)
class TurnResult:
    """Tagged outcome of a turn."""

    status: TurnStatus
    message: str
    error: TurnError | None = None

    @property
    def ok(self) -> bool:
        return self.status == TurnStatus.SUCCESS

    @classmethod
    def success(cls, message: str) -> "TurnResult":
        return cls(status=TurnStatus.SUCCESS, message=message)

    @classmethod
    def from_exception(
        cls,
        exc: ChatAgentError,
        fallback_message: str = DEFAULT_FALLBACK_MESSAGE,
    ) -> "TurnResult":
        """Build the error shape for any error kind.

        Validation and not-found messages are safe to show; persistence and
        upstream details are replaced by the fallback text.
        """
        if exc.kind in (ErrorKind.VALIDATION, ErrorKind.NOT_FOUND):
            message = exc.message
        else:
            message = fallback_message
        return cls(
            status=TurnStatus.ERROR,
            message=message,
            error=TurnError(kind=exc.kind, detail=str(exc)),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": self.status.value, "message": self.message}
        if self.error is not None:
            data["error"] = {
                "kind": self.error.kind.value,
                "detail": self.error.detail,
                "retryable": self.error.retryable,
            }
        return data


class TurnOrchestrator:
    """Runs turns against a SessionStore and an LLM provider.

    Turns on the same session are serialized for their whole duration. The
    store's own lock is only taken by each append and read, so callers
    reading a session while a reply is being generated are not blocked.
    If the session is reset while the reply is being generated, the reply
    is returned but not stored.
    """

    def __init__(
        self,
        store: SessionStore,
        formatter: HistoryFormatter,
        llm: BaseLLM,
        fallback_message: str = DEFAULT_FALLBACK_MESSAGE,
        timeout: float | None = 60.0,
        recorder: TranscriptRecorder | None = None,
    ):
        self.store = store
        self.formatter = formatter
        self.llm = llm
        self.fallback_message = fallback_message
        self.timeout = timeout
        self.recorder = recorder
        self._turn_locks = KeyedLock()

    async def send_message(self, session_id: str, text: str) -> TurnResult:
        """Run one turn and return the reply or the fallback.

        Store and formatter errors propagate unchanged. Generation failures
        are returned as an error result; they never reach the history.
        """
        async with self._turn_locks.hold(session_id):
            session = await self.store.append(session_id, MessageRole.USER, text)

            history = await self.store.get_history(session_id)
            request = self.formatter.format(history)

            try:
                reply = await self._generate(request)
            except UpstreamError as e:
                logger.error(
                    "Generation failed",
                    session_id=session_id,
                    provider=e.provider_name,
                    error=str(e),
                )
                return TurnResult.from_exception(e, self.fallback_message)

            stored = await self.store.append(
                session_id,
                MessageRole.ASSISTANT,
                reply,
                expected_epoch=session.epoch,  # type: ignore[union-attr]
            )

        if stored is None:
            # Session was reset mid-turn; the reply answers a discarded context
            logger.warning("Session reset during turn; reply not stored", session_id=session_id)
            return TurnResult.success(reply)

        logger.info("Turn completed", session_id=session_id, reply_length=len(reply))

        if self.recorder is not None:
            await self._record(session_id, text, reply)

        return TurnResult.success(reply)

    async def _generate(self, request: GenerationRequest) -> str:
        provider = self.llm.provider_name
        try:
            response = await asyncio.wait_for(self.llm.generate(request), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise UpstreamError(provider, f"timed out after {self.timeout}s") from e
        except UpstreamError:
            raise
        except Exception as e:
            logger.exception("LLM generation error", provider=provider)
            raise UpstreamError(provider, str(e) or type(e).__name__) from e

        content = getattr(response, "content", None)
        if not isinstance(content, str) or not content.strip():
            raise UpstreamError(provider, "malformed or empty response")
        return content

    async def _record(self, session_id: str, user_message: str, reply: str) -> None:
        try:
            await self.recorder.record(session_id, user_message, reply)  # type: ignore[union-attr]
        except PersistenceError as e:
            # The reply is already part of the history at this point.
            logger.error("Failed to record transcript", session_id=session_id, error=str(e))


async def create_orchestrator(
    settings: Settings | None = None,
    backend: PersistenceBackend | None = None,
    llm: BaseLLM | None = None,
) -> TurnOrchestrator:
    """Wire store, formatter and provider from settings."""
    settings = settings or get_settings()
    backend = backend or await create_backend(settings)
    llm = llm or create_llm(settings=settings)

    store = SessionStore(
        backend,
        retention_limit=settings.retention_limit,
        default_system_instruction=settings.system_instruction,
        lazy_init=settings.lazy_sessions,
    )
    formatter = HistoryFormatter(
        strategy=settings.formatting_strategy,
        max_output_tokens=settings.max_tokens,
    )

    recorder = None
    if settings.record_transcripts:
        if isinstance(backend, DurableBackend):
            recorder = TranscriptRecorder(backend.session_maker)
        else:
            logger.warning("Transcript recording needs the database backend; disabled")

    logger.info(
        "Orchestrator ready",
        backend=backend.name,
        provider=llm.provider_name,
        strategy=formatter.strategy.value,
        retention_limit=store.retention_limit,
    )

    return TurnOrchestrator(
        store=store,
        formatter=formatter,
        llm=llm,
        fallback_message=settings.fallback_message,
        timeout=settings.generation_timeout_seconds,
        recorder=recorder,
    )
