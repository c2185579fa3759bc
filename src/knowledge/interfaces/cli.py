"""Command-line interface for the knowledge engine.

Commands:
- kb: Manage knowledge bases (create, list, info, delete)
- doc: Add documents (add, bulk)
- embed: Embed documents that have no vector yet
- search: Vector search returning documents, with metadata filters
- similar: Documents near a given document
- retrieve: Hybrid (vector + graph) retrieval
- info: Show system information
"""

import asyncio
import datetime as dt
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from knowledge.config.loader import get_default_config_path, load_config
from knowledge.config.schema import AppConfig
from knowledge.entities import Document, DocumentInput, Knowledge, KnowledgeError
from knowledge.observability.logging import configure_from_config, get_logger
from knowledge.pipelines.indexing import IndexingError
from knowledge.pipelines.retrieval import RetrievalError
from knowledge.providers.base import ProviderError
from knowledge.service import KnowledgeStore, open_knowledge_store
from knowledge.storage.base import StorageError

app = typer.Typer(
    name="knowledge",
    help="Hybrid knowledge retrieval: vector search and graph traversal with rank fusion",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)

# Failures reported to the user instead of surfacing as tracebacks
USER_ERRORS = (KnowledgeError, IndexingError, RetrievalError, ProviderError, StorageError, ValueError)

ConfigOption = typer.Option(None, "--config", "-c", help="Config file path")


def _preview(text: str, width: int = 80) -> str:
    text = " ".join(text.split())
    return text if len(text) <= width else text[: width - 3] + "..."


def _parse_pairs(pairs: Optional[list[str]], option: str) -> dict[str, str]:
    """Turn repeated KEY=VALUE options into a dict; values stay strings."""
    parsed: dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"expected KEY=VALUE, got '{pair}'", param_hint=option)
        parsed[key.strip()] = value
    return parsed


def _local_time(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")


async def _open_store(config_file: Optional[Path]) -> KnowledgeStore:
    config = _load_config(config_file)
    try:
        return await open_knowledge_store(config)
    except (ProviderError, StorageError, ValueError) as e:
        console.print(f"[red]Error initializing stores: {e}[/red]")
        raise typer.Exit(1)


kb_app = typer.Typer(help="Manage knowledge bases")
app.add_typer(kb_app, name="kb")


@kb_app.command("create")
def kb_create(
    name: str = typer.Argument(..., help="Knowledge base name"),
    description: str = typer.Option("", "--description", "-d", help="Knowledge base description"),
    config_file: Optional[Path] = ConfigOption,
):
    """Create a new knowledge base."""
    asyncio.run(_kb_create_async(name, description, config_file))


async def _kb_create_async(name: str, description: str, config_file: Optional[Path]):
    store = await _open_store(config_file)
    try:
        knowledge = await store.add_knowledge(name, description)
        console.print(f"[green]✓[/green] Created knowledge base: {knowledge.name}")
        console.print(f"  ID: {knowledge.id}")
        if knowledge.description:
            console.print(f"  Description: {knowledge.description}")
    except USER_ERRORS as e:
        console.print(f"[red]Error creating knowledge base: {e}[/red]")
        raise typer.Exit(1)
    finally:
        await store.close()


@kb_app.command("list")
def kb_list(config_file: Optional[Path] = ConfigOption):
    """List all knowledge bases."""
    asyncio.run(_kb_list_async(config_file))


async def _kb_list_async(config_file: Optional[Path]):
    store = await _open_store(config_file)
    try:
        items = await store.list_knowledge()
        if not items:
            console.print("[yellow]No knowledge bases found[/yellow]")
            return

        table = Table(title="Knowledge Bases")
        table.add_column("Name", style="cyan")
        table.add_column("ID", style="dim")
        table.add_column("Description", style="green")
        table.add_column("Documents", style="yellow")
        table.add_column("Version", style="magenta")

        for knowledge in items:
            table.add_row(
                knowledge.name,
                knowledge.id,
                knowledge.description or "-",
                str(len(knowledge.documents)),
                str(knowledge.version),
            )

        console.print(table)
    except USER_ERRORS as e:
        console.print(f"[red]Error listing knowledge bases: {e}[/red]")
        raise typer.Exit(1)
    finally:
        await store.close()


@kb_app.command("info")
def kb_info(
    name: str = typer.Argument(..., help="Knowledge base name"),
    config_file: Optional[Path] = ConfigOption,
):
    """Show knowledge base statistics."""
    asyncio.run(_kb_info_async(name, config_file))


async def _kb_info_async(name: str, config_file: Optional[Path]):
    store = await _open_store(config_file)
    try:
        knowledge = await store.get_knowledge_by_name(name)
        stats = await store.get_stats(knowledge.id)

        table = Table(title=f"Knowledge Base: {knowledge.name}")
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("ID", knowledge.id)
        table.add_row("Name", knowledge.name)
        table.add_row("Description", knowledge.description or "-")
        table.add_row("Documents", str(stats.document_count))
        table.add_row("Embeddings", str(stats.embedding_count))
        table.add_row("Version", str(stats.version))
        table.add_row("Created", _local_time(knowledge.created_at))
        table.add_row("Updated", _local_time(stats.last_updated))

        console.print(table)
    except USER_ERRORS as e:
        console.print(f"[red]Error getting knowledge base info: {e}[/red]")
        raise typer.Exit(1)
    finally:
        await store.close()


@kb_app.command("delete")
def kb_delete(
    name: str = typer.Argument(..., help="Knowledge base name"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
    config_file: Optional[Path] = ConfigOption,
):
    """Delete a knowledge base with its vectors and graph nodes."""
    if not force and not typer.confirm(f"Delete knowledge base '{name}'?"):
        console.print("[yellow]Cancelled[/yellow]")
        return
    asyncio.run(_kb_delete_async(name, config_file))


async def _kb_delete_async(name: str, config_file: Optional[Path]):
    store = await _open_store(config_file)
    try:
        knowledge = await store.get_knowledge_by_name(name)
        await store.delete_knowledge(knowledge.id)
        console.print(f"[green]✓[/green] Deleted knowledge base: {name}")
    except USER_ERRORS as e:
        console.print(f"[red]Error deleting knowledge base: {e}[/red]")
        raise typer.Exit(1)
    finally:
        await store.close()


doc_app = typer.Typer(help="Add documents to a knowledge base")
app.add_typer(doc_app, name="doc")


@doc_app.command("add")
def doc_add(
    name: str = typer.Argument(..., help="Knowledge base name"),
    text: Optional[str] = typer.Option(None, "--text", "-t", help="Document text"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Read document text from a file"),
    meta: Optional[list[str]] = typer.Option(None, "--meta", "-m", help="Metadata as KEY=VALUE (repeatable)"),
    config_file: Optional[Path] = ConfigOption,
):
    """Add one document and index its chunks."""
    if (text is None) == (file is None):
        console.print("[red]Provide exactly one of --text or --file[/red]")
        raise typer.Exit(1)
    metadata = _parse_pairs(meta, "--meta")
    asyncio.run(_doc_add_async(name, text, file, config_file, metadata))


async def _doc_add_async(
    name: str,
    text: Optional[str],
    file: Optional[Path],
    config_file: Optional[Path],
    metadata: Optional[dict[str, str]] = None,
):
    metadata = dict(metadata or {})
    if file is not None:
        text = file.read_text(encoding="utf-8")
        metadata["source"] = str(file)

    store = await _open_store(config_file)
    try:
        knowledge = await store.get_knowledge_by_name(name)
        document = await store.add_document(knowledge.id, text, metadata)
        console.print(f"[green]✓[/green] Added document {document.id} to {name}")
    except USER_ERRORS as e:
        console.print(f"[red]Error adding document: {e}[/red]")
        raise typer.Exit(1)
    finally:
        await store.close()


@doc_app.command("bulk")
def doc_bulk(
    name: str = typer.Argument(..., help="Knowledge base name"),
    paths: list[Path] = typer.Argument(..., help="Files or directories to add"),
    pattern: str = typer.Option("*.md", "--pattern", "-p", help="Glob for files inside directories"),
    config_file: Optional[Path] = ConfigOption,
):
    """Add many documents; the first failure aborts the batch."""
    asyncio.run(_doc_bulk_async(name, paths, pattern, config_file))


def _collect_files(paths: list[Path], pattern: str) -> list[Path]:
    files: list[Path] = []
    for path in paths:
        if path.is_dir():
            files.extend(sorted(p for p in path.rglob(pattern) if p.is_file()))
        elif path.is_file():
            files.append(path)
        else:
            console.print(f"[yellow]Skipping missing path: {path}[/yellow]")
    return files


async def _doc_bulk_async(name: str, paths: list[Path], pattern: str, config_file: Optional[Path]):
    files = _collect_files(paths, pattern)
    if not files:
        console.print("[yellow]No files to add[/yellow]")
        return

    inputs = [
        DocumentInput(content=f.read_text(encoding="utf-8"), metadata={"source": str(f)})
        for f in files
    ]

    store = await _open_store(config_file)
    try:
        knowledge = await store.get_knowledge_by_name(name)
        documents = await store.bulk_index(knowledge.id, inputs)
        console.print(f"[green]✓[/green] Added {len(documents)} documents to {name}")
    except USER_ERRORS as e:
        console.print(f"[red]Bulk add failed: {e}[/red]")
        raise typer.Exit(1)
    finally:
        await store.close()


@app.command()
def embed(
    name: str = typer.Argument(..., help="Knowledge base name"),
    config_file: Optional[Path] = ConfigOption,
):
    """Embed every document that has no vector yet."""
    asyncio.run(_embed_async(name, config_file))


async def _embed_async(name: str, config_file: Optional[Path]):
    store = await _open_store(config_file)
    try:
        knowledge = await store.get_knowledge_by_name(name)
        embeddings = await store.embed_documents(knowledge.id)
        console.print(f"[green]✓[/green] Embedded {len(embeddings)} documents in {name}")
    except USER_ERRORS as e:
        console.print(f"[red]Error embedding documents: {e}[/red]")
        raise typer.Exit(1)
    finally:
        await store.close()


def _print_documents(title: str, documents: list[Document]) -> None:
    if not documents:
        console.print("[yellow]No documents found[/yellow]")
        return

    table = Table(title=title)
    table.add_column("#", style="dim")
    table.add_column("Document", style="cyan")
    table.add_column("Content", style="green")

    for i, document in enumerate(documents, 1):
        table.add_row(str(i), document.id, _preview(document.content))

    console.print(table)


@app.command()
def search(
    name: str = typer.Argument(..., help="Knowledge base name"),
    query: str = typer.Argument(..., help="Search query"),
    limit: int = typer.Option(10, "--limit", "-k", help="Maximum number of documents"),
    filter_: Optional[list[str]] = typer.Option(
        None, "--filter", help="Keep documents whose metadata KEY equals VALUE (repeatable)"
    ),
    config_file: Optional[Path] = ConfigOption,
):
    """Vector search for documents, optionally filtered by metadata."""
    filters = _parse_pairs(filter_, "--filter")
    asyncio.run(_search_async(name, query, limit, config_file, filters))


async def _search_async(
    name: str,
    query: str,
    limit: int,
    config_file: Optional[Path],
    filters: Optional[dict[str, str]] = None,
):
    store = await _open_store(config_file)
    try:
        knowledge = await store.get_knowledge_by_name(name)
        if filters:
            documents = await store.filter_documents(knowledge.id, query, filters, limit)
        else:
            documents = await store.search_documents(knowledge.id, query, limit)
        _print_documents(f"Search: {query}", documents)
    except USER_ERRORS as e:
        console.print(f"[red]Search failed: {e}[/red]")
        raise typer.Exit(1)
    finally:
        await store.close()


@app.command()
def similar(
    name: str = typer.Argument(..., help="Knowledge base name"),
    document_id: str = typer.Argument(..., help="Document to find neighbours of"),
    limit: int = typer.Option(10, "--limit", "-k", help="Maximum number of documents"),
    config_file: Optional[Path] = ConfigOption,
):
    """List documents near an embedded document."""
    asyncio.run(_similar_async(name, document_id, limit, config_file))


async def _similar_async(name: str, document_id: str, limit: int, config_file: Optional[Path]):
    store = await _open_store(config_file)
    try:
        knowledge = await store.get_knowledge_by_name(name)
        documents = await store.similar_documents(knowledge.id, document_id, limit)
        _print_documents(f"Similar to {document_id}", documents)
    except USER_ERRORS as e:
        console.print(f"[red]Similarity search failed: {e}[/red]")
        raise typer.Exit(1)
    finally:
        await store.close()

@app.command()
def retrieve(
    name: str = typer.Argument(..., help="Knowledge base name"),
    query: str = typer.Argument(..., help="Query text"),
    limit: int = typer.Option(10, "--limit", "-k", help="Maximum number of results"),
    config_file: Optional[Path] = ConfigOption,
):
    """Hybrid retrieval over vectors and the chunk graph."""
    asyncio.run(_retrieve_async(name, query, limit, config_file))


async def _retrieve_async(name: str, query: str, limit: int, config_file: Optional[Path]):
    store = await _open_store(config_file)
    try:
        knowledge: Knowledge = await store.get_knowledge_by_name(name)
        context = await store.retrieve(knowledge.id, query, limit)

        if not context.results:
            console.print("[yellow]No results found[/yellow]")
            return

        table = Table(title=f"Retrieve: {query}")
        table.add_column("#", style="dim")
        table.add_column("ID", style="cyan")
        table.add_column("Source", style="magenta")
        table.add_column("Score", style="yellow")
        table.add_column("Content", style="green")

        for i, result in enumerate(context.results, 1):
            table.add_row(
                str(i),
                result.id,
                result.source.value,
                f"{result.score:.4f}",
                _preview(result.content),
            )

        console.print(table)
        console.print(
            f"[dim]total found: {context.total_found}, mean score: {context.fused_score:.4f}[/dim]"
        )
    except USER_ERRORS as e:
        console.print(f"[red]Retrieval failed: {e}[/red]")
        raise typer.Exit(1)
    finally:
        await store.close()


@app.command()
def info(config_file: Optional[Path] = ConfigOption):
    """Show system information and configuration."""
    config = _load_config(config_file)

    table = Table(title="Knowledge Engine Information")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Data Directory", str(config.data_dir))
    table.add_row("Log Level", config.log_level.value)
    table.add_row("Embedding Provider", config.embedding.provider.value)
    table.add_row("Embedding Model", config.embedding.model_name)
    table.add_row("Vector Store", config.vector_store.store_type.value)
    table.add_row("Graph Store", config.graph_store.store_type.value)
    table.add_row("Repository", config.repository.store_type.value)
    table.add_row("Chunk Size / Overlap", f"{config.chunking.chunk_size} / {config.chunking.chunk_overlap}")
    table.add_row("Rerank", "on" if config.retrieval.rerank else "off")

    console.print(table)


def _load_config(config_file: Optional[Path]) -> AppConfig:
    """Load configuration and setup logging."""
    if config_file is None:
        config_file = get_default_config_path()

    try:
        config = load_config(config_file)
    except (OSError, ValueError) as e:
        console.print(f"[red]Invalid configuration in {config_file}: {e}[/red]")
        raise typer.Exit(1)
    configure_from_config(config)

    return config


if __name__ == "__main__":
    app()
