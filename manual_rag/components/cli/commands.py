"""
CLI commands for ingesting a manual and asking questions about it.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from ...components.chat.composer import AnswerComposer
from ...components.ingestion.orchestrator import IngestionOrchestrator
from ...components.pdf.renderer import prepare_ingestion_input
from ...config.chat import chat_config, prompt_config
from ...config.database import db_config
from ...config.processor import processor_config
from ...services.database import (
    create_async_db_engine, create_async_session_maker, initialize_database,
)
from ...services.knowledge_base import InMemoryKnowledgeBase, PostgresKnowledgeBase
from ...services.storage import LocalAssetStorage, document_key

logger = logging.getLogger(__name__)
console = Console()

@asynccontextmanager
async def open_knowledge_base():
    """Yield the configured knowledge base and dispose of its engine afterwards."""
    if db_config.vector_store_type == "memory":
        logger.warning("VECTOR_STORE_TYPE=memory: contents are lost when the command exits")
        yield InMemoryKnowledgeBase()
        return

    engine = create_async_db_engine(db_config)
    try:
        yield PostgresKnowledgeBase(create_async_session_maker(engine))
    finally:
        await engine.dispose()

@click.group()
def cli():
    """Manual ingestion and question answering CLI."""
    pass

@cli.command("init-db")
@click.option('--drop', is_flag=True, help='Drop and recreate all tables (deletes existing data)')
def init_db(drop: bool):
    """Create the pgvector extension, tables and indexes."""
    async def _init():
        engine = create_async_db_engine(db_config)
        try:
            await initialize_database(engine, drop_all=drop, lists=db_config.ivfflat_lists)
        finally:
            await engine.dispose()

    try:
        asyncio.run(_init())
    except Exception as e:
        click.echo(f"Error: {str(e)}", err=True)
        raise click.Abort()
    console.print("[green]Database initialized[/green]")

@cli.command()
@click.argument('pdf', type=click.Path(exists=True, dir_okay=False))
@click.option('--user-id', required=True, help='Owner of the manual')
@click.option('--fallback', is_flag=True, help='Skip page rendering and use text extraction')
def ingest(pdf: str, user_id: str, fallback: bool):
    """Upload a PDF for a user and build their knowledge base."""
    async def _ingest():
        pdf_bytes = Path(pdf).read_bytes()
        storage = LocalAssetStorage.from_config(processor_config.storage_config)
        key = document_key(user_id)
        await storage.save_document(key, pdf_bytes)

        ingestion_input = await prepare_ingestion_input(
            pdf_bytes, processor_config.storage_config, use_vision=not fallback
        )
        async with open_knowledge_base() as knowledge_base:
            document = await knowledge_base.upsert_document(user_id, key, Path(pdf).name)
            orchestrator = IngestionOrchestrator.from_config(
                knowledge_base, storage, processor_config, prompt_config
            )
            return await orchestrator.ingest(document.id, user_id, ingestion_input)

    try:
        result = asyncio.run(_ingest())
    except Exception as e:
        click.echo(f"Error: {str(e)}", err=True)
        raise click.Abort()

    table = Table(title=f"Ingested {Path(pdf).name}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Document", str(result.document_id))
    table.add_row("Method", result.processing_method)
    table.add_row("Pages", str(result.total_pages))
    table.add_row("Chunks", str(result.chunks_count))
    table.add_row("Images", str(result.images_count))
    if result.summary:
        table.add_row("Summary", result.summary)
    console.print(table)

@cli.command()
@click.argument('question')
@click.option('--user-id', required=True, help='Owner of the manual')
def ask(question: str, user_id: str):
    """Ask a question about a user's manual."""
    async def _ask():
        async with open_knowledge_base() as knowledge_base:
            composer = AnswerComposer.from_config(
                knowledge_base, chat_config, processor_config, prompt_config
            )
            return await composer.answer(question, user_id)

    try:
        answer = asyncio.run(_ask())
    except Exception as e:
        click.echo(f"Error: {str(e)}", err=True)
        raise click.Abort()

    table = Table(title=question, show_lines=True)
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Step", style="white")
    for i, step in enumerate(answer.steps, start=1):
        table.add_row(str(i), step)
    console.print(table)

    for image in answer.images:
        console.print(f"[magenta]Page {image.page_number}[/magenta] {image.caption} -> {image.url}")

@cli.command()
@click.option('--user-id', required=True, help='Owner of the manual')
def status(user_id: str):
    """Show the processing status of a user's manual."""
    async def _status():
        async with open_knowledge_base() as knowledge_base:
            document = await knowledge_base.get_document(user_id)
            if document is None:
                return None, (0, 0)
            return document, await knowledge_base.count_contents(user_id)

    try:
        document, (chunks_count, images_count) = asyncio.run(_status())
    except Exception as e:
        click.echo(f"Error: {str(e)}", err=True)
        raise click.Abort()

    if document is None:
        console.print(f"[yellow]No document for user {user_id}[/yellow]")
        return

    table = Table(title=f"Document of {user_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Document", str(document.id))
    table.add_row("File", document.original_filename or document.file_path)
    table.add_row("Processed", "yes" if document.processed else "no")
    table.add_row("Method", document.processing_method or "-")
    table.add_row("Pages", str(document.total_pages or "-"))
    table.add_row("Chunks", str(chunks_count))
    table.add_row("Images", str(images_count))
    console.print(table)

if __name__ == '__main__':
    cli()
