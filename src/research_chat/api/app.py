"""
FastAPI application factory.

Manages the lifecycle of:
- Database connection and turn store
- The process-wide agent
- The conversation orchestrator behind the NDJSON stream endpoint
"""

from contextlib import aclosing, asynccontextmanager
from typing import AsyncGenerator, AsyncIterator

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from .. import __version__
from ..agent import Agent, ConversationOrchestrator, encode_event, get_agent
from ..config import Settings, get_settings
from ..errors import ConversationNotFoundError, PersistenceError
from ..models import init_database
from ..store import TurnStore

logger = structlog.get_logger()

NDJSON_MEDIA_TYPE = "application/x-ndjson"


class StreamRequest(BaseModel):
    """Body of POST /api/stream."""

    model_config = ConfigDict(populate_by_name=True)

    user_input: str = Field(alias="userInput", min_length=1)
    conversation_id: str | None = Field(default=None, alias="conversationId")


def create_app(settings: Settings | None = None, agent: Agent | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        session_maker = await init_database(settings.database_url)
        logger.info("Database initialized", database_url=settings.database_url)

        store = TurnStore(session_maker)
        runtime = agent or get_agent(settings)

        app.state.store = store
        app.state.agent = runtime
        app.state.orchestrator = ConversationOrchestrator(store, runtime)

        logger.info(
            "Agent ready",
            provider=runtime.llm.provider_name,
            model=runtime.llm.model,
            tools=runtime.tool_registry.list_tools(),
        )

        yield

        await session_maker.kw["bind"].dispose()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        description="Web research assistant with streaming tool-using conversations",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ------------------------------------------------------------------ #
    # Health
    # ------------------------------------------------------------------ #
    @app.get("/api/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        runtime: Agent = request.app.state.agent
        return {
            "status": "healthy",
            "version": __version__,
            "provider": runtime.llm.provider_name,
            "model": runtime.llm.model,
            "tools": runtime.tool_registry.list_tools(),
        }

    # ------------------------------------------------------------------ #
    # Streaming chat
    # ------------------------------------------------------------------ #
    @app.post("/api/stream")
    async def stream_chat(body: StreamRequest, request: Request):
        """Run one user message and stream events back as NDJSON."""
        orchestrator: ConversationOrchestrator = request.app.state.orchestrator

        try:
            conversation_id = await orchestrator.resolve_conversation(body.conversation_id)
        except ConversationNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except PersistenceError as e:
            logger.error("Failed to create conversation", error=str(e))
            raise HTTPException(status_code=500, detail="Failed to create conversation")

        async def body_iterator() -> AsyncIterator[bytes]:
            events = orchestrator.stream_conversation(conversation_id, body.user_input)
            async with aclosing(events):
                async for event in events:
                    yield encode_event(event)

        return StreamingResponse(
            body_iterator(),
            media_type=NDJSON_MEDIA_TYPE,
            headers={
                "Cache-Control": "no-cache",
                "X-Conversation-Id": conversation_id,
            },
        )

    # ------------------------------------------------------------------ #
    # Conversations
    # ------------------------------------------------------------------ #
    @app.get("/api/conversations")
    async def list_conversations(request: Request):
        """List conversations, newest first."""
        store: TurnStore = request.app.state.store
        conversations = await store.list_conversations()
        return {
            "conversations": [c.to_dict() for c in conversations],
            "count": len(conversations),
        }

    @app.post("/api/conversations", status_code=201)
    async def create_conversation(request: Request):
        """Create an empty conversation."""
        store: TurnStore = request.app.state.store
        conversation = await store.create_conversation()
        return conversation.to_dict()

    @app.get("/api/conversations/{conversation_id}")
    async def get_conversation(conversation_id: str, request: Request):
        """Get a conversation with its turns."""
        store: TurnStore = request.app.state.store
        conversation = await store.get_conversation(conversation_id)
        if conversation is None:
            raise HTTPException(status_code=404, detail="Conversation not found")
        return conversation.to_dict(include_turns=True)

    @app.delete("/api/conversations/{conversation_id}")
    async def delete_conversation(conversation_id: str, request: Request):
        """Delete a conversation and drop its agent thread."""
        store: TurnStore = request.app.state.store
        runtime: Agent = request.app.state.agent

        deleted = await store.delete_conversation(conversation_id)
        if not deleted:
            raise HTTPException(status_code=404, detail="Conversation not found")

        runtime.evict_thread(conversation_id)
        return {"status": "deleted", "id": conversation_id}

    return app
