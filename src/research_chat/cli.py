"""
Command-line interface for research-chat.
"""

import argparse
import asyncio
import json
import logging
import sys

import httpx
import structlog
import uvicorn

from .config import get_settings


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog on top of stdlib logging."""
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level.upper())

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger()


def main() -> None:
    """Main entry point for the CLI."""
    settings = get_settings()
    configure_logging(settings.log_level)

    parser = argparse.ArgumentParser(
        prog="research-chat",
        description="research-chat - a web research assistant with streaming conversations",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", default=settings.host, help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=settings.port, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    default_url = f"http://localhost:{settings.port}"

    chat_parser = subparsers.add_parser("chat", help="Chat with the assistant interactively")
    chat_parser.add_argument("--url", default=default_url, help="Server URL")
    chat_parser.add_argument("--conversation", help="Continue an existing conversation")
    chat_parser.add_argument("--show-reasoning", action="store_true", help="Print reasoning tokens")

    conv_parser = subparsers.add_parser("conversations", help="Manage conversations")
    conv_parser.add_argument("--url", default=default_url, help="Server URL")
    conv_subparsers = conv_parser.add_subparsers(dest="conv_command")
    conv_subparsers.add_parser("list", help="List conversations")
    show_parser = conv_subparsers.add_parser("show", help="Show a conversation's turns")
    show_parser.add_argument("id", help="Conversation id")
    delete_parser = conv_subparsers.add_parser("delete", help="Delete a conversation")
    delete_parser.add_argument("id", help="Conversation id")

    subparsers.add_parser("config", help="Show configuration")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "serve":
        run_server(args.host, args.port, args.reload)
    elif args.command == "chat":
        asyncio.run(chat_loop(args.url, args.conversation, args.show_reasoning))
    elif args.command == "conversations":
        if args.conv_command == "list":
            asyncio.run(list_conversations(args.url))
        elif args.conv_command == "show":
            asyncio.run(show_conversation(args.url, args.id))
        elif args.conv_command == "delete":
            asyncio.run(delete_conversation(args.url, args.id))
        else:
            conv_parser.print_help()
    elif args.command == "config":
        show_config()
    else:
        parser.print_help()


def run_server(host: str, port: int, reload: bool) -> None:
    """Run the FastAPI server."""
    logger.info("Starting research-chat server", host=host, port=port)

    uvicorn.run(
        "research_chat.api.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
        log_level="info",
    )


async def chat_loop(url: str, conversation_id: str | None, show_reasoning: bool) -> None:
    """Read user messages from stdin and print streamed responses."""
    from .agent.events import (
        ReasoningEvent,
        SummarizedEvent,
        TokenEvent,
        ToolCallEvent,
        ToolResultEvent,
    )
    from .client import StreamClient
    from .agent.orchestrator import summarized_notice

    client = StreamClient(url)

    def on_event(event) -> None:
        if isinstance(event, TokenEvent):
            print(event.content, end="", flush=True)
        elif isinstance(event, ReasoningEvent) and show_reasoning:
            print(f"\033[2m{event.content}\033[0m", end="", flush=True)
        elif isinstance(event, ToolCallEvent):
            print(f"\n[tool] {event.name}({json.dumps(event.args)})", flush=True)
        elif isinstance(event, ToolResultEvent):
            print(f"[tool] result received ({len(event.result)} chars)", flush=True)
        elif isinstance(event, SummarizedEvent):
            print(f"[info] {summarized_notice(event.message_count)}", flush=True)

    print("Type a message, or 'exit' to quit.")
    while True:
        try:
            user_input = (await asyncio.to_thread(input, "\n> ")).strip()
        except (EOFError, KeyboardInterrupt):
            print()
            break

        if not user_input:
            continue
        if user_input.lower() in ("exit", "quit"):
            break

        try:
            message = await client.send(user_input, conversation_id, on_event=on_event)
        except httpx.HTTPError as e:
            print(f"\nSorry, there was an error processing your request: {e}")
            continue

        if not message.content:
            print(message.final_content, end="")
        print()
        conversation_id = client.conversation_id

    if conversation_id:
        print(f"Conversation: {conversation_id}")


async def list_conversations(url: str) -> None:
    """List conversations on the server."""
    from .client import StreamClient

    conversations = await StreamClient(url).list_conversations()
    if not conversations:
        print("No conversations yet.")
        return

    print(f"\n{'ID':<38} {'Updated':<28} {'Title'}")
    print("-" * 90)
    for conv in conversations:
        print(f"{conv['id']:<38} {conv.get('updatedAt') or 'N/A':<28} {conv.get('title') or '(untitled)'}")


async def show_conversation(url: str, conversation_id: str) -> None:
    """Print a conversation's turns."""
    from .client import StreamClient

    conversation = await StreamClient(url).get_conversation(conversation_id)
    if conversation is None:
        print(f"Conversation not found: {conversation_id}")
        return

    print(f"\n{conversation.get('title') or '(untitled)'}\n")
    if conversation.get("summary"):
        print(f"[summary] {conversation['summary']}\n")
    for turn in conversation.get("turns", []):
        for call in turn.get("toolCalls") or []:
            print(f"  [tool:{call['status']}] {call['name']}({json.dumps(call['args'])})")
        print(f"{turn['role']}: {turn['content']}\n")


async def delete_conversation(url: str, conversation_id: str) -> None:
    """Delete a conversation."""
    from .client import StreamClient

    if await StreamClient(url).delete_conversation(conversation_id):
        print(f"Deleted {conversation_id}")
    else:
        print(f"Conversation not found: {conversation_id}")


def show_config() -> None:
    """Show current configuration."""
    settings = get_settings()

    def mask(value: str) -> str:
        if not value:
            return "(not set)"
        return value[:4] + "..." + value[-4:] if len(value) > 10 else "****"

    print("\n=== research-chat Configuration ===\n")

    print("Server:")
    print(f"  Host: {settings.host}")
    print(f"  Port: {settings.port}")
    print(f"  Debug: {settings.debug}")

    print("\nLLM:")
    print(f"  Provider: {settings.default_provider}")
    print(f"  Model: {settings.default_model}")
    print(f"  Ollama URL: {settings.ollama_base_url}")
    print(f"  OpenAI Key: {mask(settings.openai_api_key)}")
    print(f"  Anthropic Key: {mask(settings.anthropic_api_key)}")
    print(f"  OpenRouter Key: {mask(settings.openrouter_api_key)}")

    print("\nContext window:")
    print(f"  Summary threshold (est. tokens): {settings.summary_token_threshold}")
    print(f"  Turns kept verbatim: {settings.keep_turns}")
    print(f"  Thread compaction trigger (est. tokens): {settings.thread_token_trigger}")
    print(f"  Thread messages kept: {settings.thread_keep_messages}")

    print("\nTools:")
    print(f"  Search URL: {settings.search_url}")
    print(f"  Fetch timeout: {settings.fetch_timeout}s")
    print(f"  Max tool iterations: {settings.max_tool_iterations}")

    print("\nDatabase:")
    print(f"  URL: {settings.database_url}")


if __name__ == "__main__":
    main()
