"""FastAPI application exposing DocChat over HTTP."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Set

from fastapi import BackgroundTasks, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from docchat.chat.budget import ContextBudgeter
from docchat.chat.history import SQLiteChatStore
from docchat.chat.session import ChatSession, PreparedTurn
from docchat.chat.transport import ModelOptions, OllamaTransport
from docchat.config import AppConfig
from docchat.embedding.encoder import EncoderConfig, QueryEncoder
from docchat.exceptions import DocChatError, ValidationError
from docchat.index.search import LibraryRetriever, Searcher
from docchat.index.storage import SQLiteLibraryStore
from docchat.models import StreamUpdate

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="DocChat API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Chats with a turn in flight; a chat never streams two turns at once.
_active_chats: Set[str] = set()


class CreateChatPayload(BaseModel):
    model: str | None = None


class OptionsPayload(BaseModel):
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    repeat_penalty: float | None = None
    seed: int | None = None
    num_ctx: int | None = None


class TurnPayload(BaseModel):
    message: str
    model: str | None = None
    system_prompt: str | None = None
    documents: List[str] = []
    options: OptionsPayload | None = None


class PlanPayload(BaseModel):
    message: str


def _get_config() -> AppConfig:
    return AppConfig.from_env()


def _open_chat_store(config: AppConfig) -> SQLiteChatStore:
    resolved = config.resolve_path(config.chat_db_path, Path.cwd())
    resolved.parent.mkdir(parents=True, exist_ok=True)
    return SQLiteChatStore(resolved)


def _build_retriever(config: AppConfig, documents: List[str]) -> LibraryRetriever | None:
    if not documents:
        return None
    resolved = config.resolve_path(config.library_db_path, Path.cwd())
    if not resolved.exists():
        raise HTTPException(status_code=404, detail=f"Library not found at {resolved}")
    encoder = QueryEncoder(EncoderConfig(model_name=config.embedding_model))
    searcher = Searcher(encoder, SQLiteLibraryStore(resolved))
    return LibraryRetriever(
        searcher,
        documents=documents,
        similarity_threshold=config.similarity_threshold,
    )


def _serialize_update(update: StreamUpdate) -> str:
    data: Dict[str, Any] = {"text": update.text, "delta": update.delta, "done": update.done}
    if update.metrics is not None:
        data["metrics"] = {
            "total_duration_ms": update.metrics.total_duration_ms,
            "eval_count": update.metrics.eval_count,
            "tokens_per_second": update.metrics.tokens_per_second,
            "done_reason": update.metrics.done_reason,
        }
    return json.dumps(data) + "\n"


@app.on_event("startup")
async def startup_event() -> None:
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")


@app.get("/models")
async def list_models() -> dict[str, Any]:
    config = _get_config()
    return {
        "models": [
            {"name": item.friendly_name, "model": item.model_name} for item in config.chat_models
        ]
    }


@app.get("/documents")
async def list_documents() -> dict[str, Any]:
    config = _get_config()
    resolved = config.resolve_path(config.library_db_path, Path.cwd())
    if not resolved.exists():
        return {"documents": []}
    store = SQLiteLibraryStore(resolved)
    try:
        documents = store.list_documents()
    finally:
        store.close()
    return {"documents": documents}


@app.post("/chats")
async def create_chat(payload: CreateChatPayload) -> dict[str, str]:
    config = _get_config()
    model = payload.model or config.chat_models[0].model_name
    store = _open_chat_store(config)
    try:
        chat_id = store.create_chat(model)
    finally:
        store.close()
    return {"chat_id": chat_id, "model": model}


@app.get("/chats")
async def list_chats() -> dict[str, Any]:
    store = _open_chat_store(_get_config())
    try:
        chats = store.list_chats()
    finally:
        store.close()
    return {"chats": chats}


@app.get("/chats/{chat_id}/messages")
async def get_messages(chat_id: str) -> dict[str, Any]:
    config = _get_config()
    store = _open_chat_store(config)
    try:
        if not store.chat_exists(chat_id):
            raise HTTPException(status_code=404, detail=f"Chat {chat_id} not found")
        messages = store.load_history(chat_id, limit=config.history_limit)
    finally:
        store.close()
    return {"messages": [message.to_dict() for message in messages]}


@app.delete("/chats/{chat_id}")
async def delete_chat(chat_id: str) -> dict[str, str]:
    store = _open_chat_store(_get_config())
    try:
        deleted = store.delete_chat(chat_id)
    finally:
        store.close()
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Chat {chat_id} not found")
    return {"status": "ok"}


@app.post("/chats/{chat_id}/plan")
async def plan_turn(chat_id: str, payload: PlanPayload) -> dict[str, Any]:
    config = _get_config()
    store = _open_chat_store(config)
    try:
        if not store.chat_exists(chat_id):
            raise HTTPException(status_code=404, detail=f"Chat {chat_id} not found")
        history = store.load_history(chat_id, limit=config.history_limit)
    finally:
        store.close()

    budgeter = ContextBudgeter(reserve_fraction=config.reserve_fraction)
    budget = budgeter.plan(config.max_context, config.system_prompt, history, payload.message)
    return {
        "max_chunks": budget.max_chunks,
        "available_token_budget": budget.available_token_budget,
    }


async def _release_chat(chat_id: str, store: SQLiteChatStore) -> None:
    _active_chats.discard(chat_id)
    store.close()


async def _stream_updates(
    session: ChatSession,
    prepared: PreparedTurn,
    options: ModelOptions | None,
    store: SQLiteChatStore,
) -> AsyncIterator[str]:
    try:
        async for update in session.stream_turn(prepared, options):
            yield _serialize_update(update)
        if session.error:
            yield json.dumps({"error": session.error}) + "\n"
    except DocChatError as exc:
        yield json.dumps({"error": str(exc), "text": session.response}) + "\n"
    finally:
        await _release_chat(session.conversation_id, store)


@app.post("/chats/{chat_id}/turns")
async def create_turn(chat_id: str, payload: TurnPayload) -> StreamingResponse:
    config = _get_config()

    if chat_id in _active_chats:
        raise HTTPException(status_code=409, detail="A response is already streaming for this chat")

    store = _open_chat_store(config)
    try:
        chat = store.get_chat(chat_id)
        if chat is None:
            raise HTTPException(status_code=404, detail=f"Chat {chat_id} not found")

        history = store.load_history(chat_id, limit=config.history_limit)
        session = ChatSession(
            chat_id,
            transport=OllamaTransport(config.endpoint, timeout=config.request_timeout),
            persistence=store,
            config=config,
        )
        prepared = session.prepare(
            payload.message,
            payload.model or chat["model"],
            history,
            system_prompt=payload.system_prompt,
            retriever=_build_retriever(config, payload.documents),
        )
    except ValidationError as exc:
        store.close()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except HTTPException:
        store.close()
        raise

    options = ModelOptions(**payload.options.model_dump()) if payload.options else None
    # Runs after the response even if the body is never iterated.
    cleanup = BackgroundTasks()
    cleanup.add_task(_release_chat, chat_id, store)
    _active_chats.add(chat_id)
    LOGGER.info("Streaming turn for chat %s with %d chunks", chat_id, len(prepared.chunks))
    return StreamingResponse(
        _stream_updates(session, prepared, options, store),
        media_type="application/x-ndjson",
        background=cleanup,
    )
