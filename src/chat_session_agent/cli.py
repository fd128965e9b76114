"""
Command-line interface for chat-session-agent.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import structlog
import uvicorn

from .config import get_settings
from .exceptions import ChatAgentError

logger = structlog.get_logger()


def configure_logging(level: str = "INFO") -> None:
    """Route structlog through stdlib logging at the given level."""
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level.upper())
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def main() -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="chat-agent",
        description="Chat-Session-Agent - conversational sessions backed by an LLM",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP server")
    serve_parser.add_argument("--host", default=None, help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    chat_parser = subparsers.add_parser("chat", help="Chat with the bot in the terminal")
    chat_parser.add_argument("--session", default="cli", help="Session ID to use")

    history_parser = subparsers.add_parser("history", help="Show a session's history")
    history_parser.add_argument("session", help="Session ID")

    clear_parser = subparsers.add_parser("clear", help="Reset a session to its system instruction")
    clear_parser.add_argument("session", help="Session ID")

    config_parser = subparsers.add_parser("config", help="Show configuration")
    config_parser.add_argument("--check", action="store_true", help="Check configuration validity")

    subparsers.add_parser("init", help="Create a .env template and the data directory")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    configure_logging(get_settings().log_level)

    if args.command == "serve":
        settings = get_settings()
        run_server(args.host or settings.host, args.port or settings.port, args.reload)
    elif args.command == "chat":
        asyncio.run(chat_loop(args.session))
    elif args.command == "history":
        sys.exit(asyncio.run(show_history(args.session)))
    elif args.command == "clear":
        sys.exit(asyncio.run(clear_history(args.session)))
    elif args.command == "config":
        show_config(args.check)
    elif args.command == "init":
        init_project()
    else:
        parser.print_help()


def run_server(host: str, port: int, reload: bool) -> None:
    """Run the FastAPI server."""
    logger.info("Starting Chat-Session-Agent server", host=host, port=port)

    uvicorn.run(
        "chat_session_agent.api.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
        log_level="info",
    )


async def chat_loop(session_id: str) -> None:
    """Interactive chat against one session."""
    from .agent import create_orchestrator

    orchestrator = await create_orchestrator()
    store = orchestrator.store

    print(f"Session '{session_id}' ({store.backend.name} backend). /history, /clear, /quit")

    try:
        while True:
            try:
                text = await asyncio.to_thread(input, "you> ")
            except EOFError:
                break

            text = text.strip()
            if not text:
                continue
            if text in ("/quit", "/exit"):
                break
            if text == "/history":
                await _print_history(store, session_id)
                continue
            if text == "/clear":
                await store.clear(session_id)
                print("(history cleared)")
                continue

            try:
                result = await orchestrator.send_message(session_id, text)
            except ChatAgentError as e:
                print(f"! {e}")
                continue

            print(f"bot> {result.message}")
            if result.error is not None:
                print(f"  ({result.error.kind.value}: {result.error.detail})")
    finally:
        await store.backend.close()


async def _print_history(store, session_id: str) -> None:
    for message in await store.get_history(session_id):
        stamp = message.timestamp.strftime("%Y-%m-%d %H:%M:%S")
        print(f"[{stamp}] {message.role.value:<9} {message.content}")


async def show_history(session_id: str) -> int:
    """Print a session's history. Returns the exit code."""
    from .agent import SessionStore
    from .storage import create_backend

    settings = get_settings()
    backend = await create_backend(settings)
    store = SessionStore(
        backend,
        retention_limit=settings.retention_limit,
        default_system_instruction=settings.system_instruction,
    )
    try:
        await _print_history(store, session_id)
    except ChatAgentError as e:
        logger.error("Cannot show history", session_id=session_id, error=str(e))
        return 1
    finally:
        await backend.close()
    return 0


async def clear_history(session_id: str) -> int:
    """Clear a session. Returns the exit code."""
    from .agent import SessionStore
    from .storage import create_backend

    settings = get_settings()
    backend = await create_backend(settings)
    store = SessionStore(
        backend,
        retention_limit=settings.retention_limit,
        default_system_instruction=settings.system_instruction,
    )
    try:
        await store.clear(session_id)
    except ChatAgentError as e:
        logger.error("Cannot clear session", session_id=session_id, error=str(e))
        return 1
    finally:
        await backend.close()

    logger.info("Session cleared", session_id=session_id)
    return 0


def show_config(check: bool) -> None:
    """Show current configuration."""
    settings = get_settings()

    def mask(value: str) -> str:
        if not value:
            return "(not set)"
        return value[:4] + "..." + value[-4:] if len(value) > 10 else "****"

    print("\n=== Chat-Session-Agent Configuration ===\n")

    print("Server:")
    print(f"  Host: {settings.host}")
    print(f"  Port: {settings.port}")
    print(f"  Debug: {settings.debug}")

    print("\nLLM Providers:")
    llm_config = settings.get_llm_config()
    print(f"  Default: {settings.default_provider}")
    print(f"  Model: {llm_config.model}")
    print(f"  Max Output Tokens: {settings.max_tokens}")
    print(f"  Google Key: {mask(settings.google_api_key)}")
    print(f"  OpenAI Key: {mask(settings.openai_api_key)}")
    print(f"  Anthropic Key: {mask(settings.anthropic_api_key)}")
    print(f"  OpenRouter Key: {mask(settings.openrouter_api_key)}")

    print("\nSessions:")
    print(f"  Backend: {settings.session_backend}")
    print(f"  Retention Limit: {settings.retention_limit}")
    print(f"  Formatting Strategy: {settings.formatting_strategy}")
    print(f"  Lazy Sessions: {settings.lazy_sessions}")
    print(f"  Record Transcripts: {settings.record_transcripts}")

    print("\nLINE:")
    print(f"  Access Token: {mask(settings.line_channel_access_token)}")
    print(f"  Channel Secret: {mask(settings.line_channel_secret)}")

    print("\nDatabase:")
    print(f"  URL: {settings.database_url}")

    if check:
        print("\n=== Configuration Check ===\n")
        errors = []
        warnings = []

        if not llm_config.api_key:
            errors.append(f"API key for provider '{settings.default_provider}' is required")

        if settings.record_transcripts and settings.session_backend != "database":
            warnings.append("RECORD_TRANSCRIPTS only works with SESSION_BACKEND=database")

        if settings.line_channel_access_token and not settings.line_channel_secret:
            warnings.append("LINE_CHANNEL_SECRET not set - webhook signatures are not checked")

        if settings.admin_password == "changeme":
            warnings.append("Using default admin password - change ADMIN_PASSWORD in production")

        if errors:
            print("Errors:")
            for e in errors:
                print(f"   - {e}")

        if warnings:
            print("Warnings:")
            for w in warnings:
                print(f"   - {w}")

        if not errors and not warnings:
            print("Configuration looks good!")
        elif not errors:
            print("\nConfiguration is valid (with warnings)")
        else:
            print("\nConfiguration has errors - fix them before starting")


def init_project() -> None:
    """Create a .env template and the data directory."""
    env_file = Path(".env")
    data_dir = Path("data")

    data_dir.mkdir(exist_ok=True)

    if not env_file.exists():
        env_content = """# Chat-Session-Agent Configuration

# === REQUIRED ===

# LLM API key for the default provider
GOOGLE_API_KEY=
# OPENAI_API_KEY=
# ANTHROPIC_API_KEY=
# OPENROUTER_API_KEY=

# === OPTIONAL ===

DEFAULT_PROVIDER=google
# DEFAULT_MODEL=gemini-2.0-flash
MAX_TOKENS=1000
TEMPERATURE=0.7

# Sessions
SESSION_BACKEND=memory
RETENTION_LIMIT=10
FORMATTING_STRATEGY=inline
SYSTEM_INSTRUCTION="You are a helpful assistant."
# RECORD_TRANSCRIPTS=false

# LINE Messaging API
# LINE_CHANNEL_ACCESS_TOKEN=
# LINE_CHANNEL_SECRET=

# Security
ADMIN_PASSWORD=changeme

# Server
HOST=0.0.0.0
PORT=4001

# Database
DATABASE_URL=sqlite+aiosqlite:///./data/chat.db
"""
        env_file.write_text(env_content)
        print(f"Created {env_file}")
    else:
        print(f"{env_file} already exists")

    print(f"Created {data_dir}")
    print("\n=== Next Steps ===")
    print("1. Edit .env and add an API key for your provider")
    print("2. Run: chat-agent chat      (terminal)")
    print("3. Run: chat-agent serve     (HTTP + LINE webhook)")


if __name__ == "__main__":
    main()
