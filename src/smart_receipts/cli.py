"""Command-line interface for Smart Receipts."""

from __future__ import annotations

import json
from typing import Optional

import typer
from pydantic import ValidationError

from smart_receipts.config import get_settings
from smart_receipts.db.repository import get_database
from smart_receipts.embeddings.client import build_embedder
from smart_receipts.embeddings.indexer import EmbeddingIndexer
from smart_receipts.embeddings.queue import EmbeddingQueue
from smart_receipts.ingest.service import ReceiptGroupingService
from smart_receipts.models.receipt import parse_extracted_receipt
from smart_receipts.search.service import SmartSearchService
from smart_receipts.search.tiers import SearchFailedError

app = typer.Typer(help="Smart Receipts storage, search and embedding commands.")


def _echo_json(payload: object, pretty: bool) -> None:
    typer.echo(json.dumps(payload, indent=2 if pretty else None, sort_keys=pretty))


@app.command()
def save(
    receipt_path: str = typer.Argument(..., help="Path to extracted receipt JSON."),
    user_id: str = typer.Option(..., "--user-id", help="Owner of the receipt."),
    image_url: Optional[str] = typer.Option(None, "--image-url", help="Stored image URL or path."),
    pretty: bool = typer.Option(True, "--pretty/--no-pretty", help="Pretty-print output JSON."),
) -> None:
    """
    Save an extracted receipt (single or multi-product) for a user.
    """
    with open(receipt_path, "r", encoding="utf-8") as fh:
        payload = json.load(fh)

    try:
        receipt = parse_extracted_receipt(payload)
    except ValidationError as exc:
        typer.secho(f"Invalid receipt: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    settings = get_settings()
    database = get_database()
    embedder = build_embedder(settings)
    queue = None
    if embedder is not None and settings.embedding_queue_enabled:
        queue = EmbeddingQueue(EmbeddingIndexer(database, embedder))
    service = ReceiptGroupingService(database, embedding_queue=queue)
    try:
        result = service.save_receipt(receipt, user_id, image_url=image_url)
    finally:
        if queue is not None:
            queue.join()
            queue.stop()
    _echo_json(result.model_dump(mode="json"), pretty)
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def search(
    query: str = typer.Argument(..., help="Free-text search query."),
    user_id: str = typer.Option(..., "--user-id", help="User whose receipts are searched."),
    limit: Optional[int] = typer.Option(None, "--limit", help="Maximum number of results."),
    threshold: Optional[float] = typer.Option(None, "--threshold", help="Minimum similarity."),
    pretty: bool = typer.Option(True, "--pretty/--no-pretty", help="Pretty-print output JSON."),
) -> None:
    """Run a smart search against the local database."""

    settings = get_settings()
    service = SmartSearchService(get_database(), build_embedder(settings))
    try:
        response = service.search(
            query,
            user_id,
            limit=limit if limit is not None else settings.search_limit,
            threshold=threshold if threshold is not None else settings.search_threshold,
        )
    except (ValueError, SearchFailedError) as exc:
        typer.secho(f"Search failed: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    _echo_json(response.model_dump(mode="json", by_alias=True, exclude_none=True), pretty)


@app.command("backfill-embeddings")
def backfill_embeddings(
    user_id: Optional[str] = typer.Option(None, "--user-id", help="Limit backfill to one user."),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", help="Override batch size."),
    pretty: bool = typer.Option(True, "--pretty/--no-pretty", help="Pretty-print output JSON."),
) -> None:
    """Embed one batch of receipts that are missing a vector."""

    settings = get_settings()
    indexer = EmbeddingIndexer(get_database(), build_embedder(settings))
    if not indexer.enabled:
        typer.secho(
            "Warning: no embedding provider configured; every row will fail.",
            fg=typer.colors.YELLOW,
            err=True,
        )
    result = indexer.backfill(
        user_id=user_id,
        batch_size=batch_size or settings.embedding_backfill_batch_size,
    )
    _echo_json(result.model_dump(mode="json"), pretty)


@app.command("embedding-status")
def embedding_status(
    user_id: Optional[str] = typer.Option(None, "--user-id", help="Limit status to one user."),
) -> None:
    """Show how many receipts already carry an embedding."""

    indexer = EmbeddingIndexer(get_database(), None)
    status = indexer.status(user_id=user_id)
    _echo_json(status.model_dump(by_alias=True), pretty=True)


def main(argv: Optional[list[str]] = None) -> None:
    """Entry point for `smart-receipts` and `python -m smart_receipts`."""
    app(prog_name="smart-receipts", args=argv)


if __name__ == "__main__":
    main()
