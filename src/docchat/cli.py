"""Command line interface for DocChat."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.live import Live
from rich.table import Table
from rich.text import Text

from docchat.chat.budget import ContextBudgeter
from docchat.chat.history import SQLiteChatStore
from docchat.chat.session import ChatSession, PreparedTurn
from docchat.chat.transport import ModelOptions, OllamaTransport
from docchat.config import AppConfig
from docchat.embedding.encoder import EncoderConfig, QueryEncoder
from docchat.exceptions import DocChatError, ValidationError
from docchat.index.search import LibraryRetriever, Searcher
from docchat.index.storage import SQLiteLibraryStore
from docchat.web.app import app as web_app


console = Console()
app = typer.Typer(help="DocChat - chat with local models over your document library")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _ensure_db_parent(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _open_chat_store(config: AppConfig) -> SQLiteChatStore:
    resolved = config.resolve_path(config.chat_db_path, Path.cwd())
    _ensure_db_parent(resolved)
    return SQLiteChatStore(resolved)


def _build_retriever(config: AppConfig, documents: List[str]) -> Optional[LibraryRetriever]:
    if not documents:
        return None
    resolved = config.resolve_path(config.library_db_path, Path.cwd())
    if not resolved.exists():
        raise typer.BadParameter(f"Library not found: {resolved}")
    encoder = QueryEncoder(EncoderConfig(model_name=config.embedding_model))
    searcher = Searcher(encoder, SQLiteLibraryStore(resolved))
    return LibraryRetriever(
        searcher,
        documents=documents,
        similarity_threshold=config.similarity_threshold,
    )


async def _stream_to_console(
    session: ChatSession, prepared: PreparedTurn, options: ModelOptions
) -> None:
    with Live(Text(""), console=console, refresh_per_second=12) as live:
        async for update in session.stream_turn(prepared, options):
            live.update(Text(update.text))


@app.command()
def chat(
    message: str = typer.Argument(..., help="Message to send"),
    chat_id: Optional[str] = typer.Option(None, "--chat", help="Existing chat id; a new chat is created if omitted"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Ollama model name"),
    documents: List[str] = typer.Option([], "--doc", "-d", help="Library document path to use as context"),
    system_prompt: Optional[str] = typer.Option(None, "--system", help="System prompt"),
    endpoint: Optional[str] = typer.Option(None, "--endpoint", help="Ollama chat endpoint"),
    db: Optional[Path] = typer.Option(None, "--db", help="Chat database path"),
    library: Optional[Path] = typer.Option(None, "--library", help="Library database path"),
    temperature: Optional[float] = typer.Option(None, help="Sampling temperature"),
    top_p: Optional[float] = typer.Option(None, help="Nucleus sampling probability"),
    top_k: Optional[int] = typer.Option(None, help="Top-k sampling"),
    repeat_penalty: Optional[float] = typer.Option(None, help="Repetition penalty"),
    seed: Optional[int] = typer.Option(None, help="Random seed"),
    num_ctx: Optional[int] = typer.Option(None, help="Context window requested from the model"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Send a message and stream the answer."""
    _setup_logging(verbose)
    config = AppConfig.from_env(endpoint=endpoint, chat_db_path=db, library_db_path=library)
    model_name = model or config.chat_models[0].model_name

    store = _open_chat_store(config)
    try:
        if chat_id is not None and not store.chat_exists(chat_id):
            raise typer.BadParameter(f"Chat not found: {chat_id}")

        history = store.load_history(chat_id, limit=config.history_limit) if chat_id else []
        session = ChatSession(
            chat_id or "",
            transport=OllamaTransport(config.endpoint, timeout=config.request_timeout),
            persistence=store,
            config=config,
        )
        try:
            prepared = session.prepare(
                message,
                model_name,
                history,
                system_prompt=system_prompt,
                retriever=_build_retriever(config, documents),
            )
        except ValidationError as exc:
            raise typer.BadParameter(str(exc)) from exc

        if chat_id is None:
            chat_id = session.conversation_id = store.create_chat(model_name)
            console.print(f"Started chat [bold]{chat_id}[/bold]")

        if prepared.chunks:
            console.print(f"[dim]Using {len(prepared.chunks)} library chunks[/dim]")

        options = ModelOptions(
            temperature=temperature,
            top_p=top_p,
            top_k=top_k,
            repeat_penalty=repeat_penalty,
            seed=seed,
            num_ctx=num_ctx,
        )
        try:
            asyncio.run(_stream_to_console(session, prepared, options))
        except DocChatError as exc:
            console.print(f"[red]{exc}[/red]")
            raise typer.Exit(code=1) from exc

        if session.error:
            console.print(f"[red]{session.error}[/red]")
            raise typer.Exit(code=1)
        if session.response_time_ms is not None:
            console.print(f"[dim]{session.response_time_ms / 1000:.1f}s[/dim]")
    finally:
        store.close()


@app.command()
def chats(
    db: Optional[Path] = typer.Option(None, "--db", help="Chat database path"),
) -> None:
    """List stored chats."""
    config = AppConfig.from_env(chat_db_path=db)
    store = _open_chat_store(config)
    rows = store.list_chats()
    store.close()

    if not rows:
        console.print("[yellow]No chats yet.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Chat")
    table.add_column("Model")
    table.add_column("Turns")
    table.add_column("Updated")
    for row in rows:
        table.add_row(row["chat_id"], row["model"], str(row["turn_count"]), row["updated_at"])
    console.print(table)


@app.command()
def history(
    chat_id: str = typer.Argument(..., help="Chat id"),
    db: Optional[Path] = typer.Option(None, "--db", help="Chat database path"),
    limit: int = typer.Option(50, help="Number of turns to show"),
) -> None:
    """Show the messages of a chat."""
    config = AppConfig.from_env(chat_db_path=db)
    store = _open_chat_store(config)
    try:
        if not store.chat_exists(chat_id):
            raise typer.BadParameter(f"Chat not found: {chat_id}")
        messages = store.load_history(chat_id, limit=limit)
    finally:
        store.close()

    for item in messages:
        style = "bold cyan" if item.role == "user" else "bold green"
        console.print(f"[{style}]{item.role}[/{style}]")
        console.print(Text(item.content))
        console.print()


@app.command()
def plan(
    message: str = typer.Argument(..., help="Message to budget for"),
    chat_id: Optional[str] = typer.Option(None, "--chat", help="Chat whose history is included"),
    window: Optional[int] = typer.Option(None, help="Context window size in tokens"),
    db: Optional[Path] = typer.Option(None, "--db", help="Chat database path"),
) -> None:
    """Show how many library chunks fit next to a message."""
    config = AppConfig.from_env(chat_db_path=db, max_context=window)
    history_messages = []
    if chat_id is not None:
        store = _open_chat_store(config)
        try:
            if not store.chat_exists(chat_id):
                raise typer.BadParameter(f"Chat not found: {chat_id}")
            history_messages = store.load_history(chat_id, limit=config.history_limit)
        finally:
            store.close()

    budgeter = ContextBudgeter(reserve_fraction=config.reserve_fraction)
    budget = budgeter.plan(config.max_context, config.system_prompt, history_messages, message)
    console.print(f"Context window: {config.max_context} tokens")
    console.print(f"Available for context: {budget.available_token_budget:.1f} tokens")
    console.print(f"Chunks to retrieve: [bold]{budget.max_chunks}[/bold]")


@app.command()
def models() -> None:
    """List the configured chat models."""
    config = AppConfig.from_env()
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Name")
    table.add_column("Model")
    for item in config.chat_models:
        table.add_row(item.friendly_name, item.model_name)
    console.print(table)


@app.command()
def documents(
    library: Optional[Path] = typer.Option(None, "--library", help="Library database path"),
) -> None:
    """List the library documents that can be passed with --doc."""
    config = AppConfig.from_env(library_db_path=library)
    resolved = config.resolve_path(config.library_db_path, Path.cwd())
    if not resolved.exists():
        raise typer.BadParameter(f"Library not found: {resolved}")

    store = SQLiteLibraryStore(resolved)
    try:
        rows = store.list_documents()
    finally:
        store.close()

    if not rows:
        console.print("[yellow]No documents in the library.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Title")
    table.add_column("Path")
    table.add_column("Chunks")
    for row in rows:
        table.add_row(row["title"] or "", row["path"], str(row["chunk_count"]))
    console.print(table)


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
) -> None:
    """Start the HTTP API."""
    try:
        import uvicorn
    except ImportError as exc:  # pragma: no cover
        raise typer.BadParameter(
            "uvicorn is not installed. Install the web extras with \"python -m pip install '.[web]'\""
        ) from exc

    console.print(f"Starting DocChat API on http://{host}:{port}")
    uvicorn.run(
        web_app,
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )
