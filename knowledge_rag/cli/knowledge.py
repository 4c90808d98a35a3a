"""Command-line interface for the knowledge base.

Usage::

    python -m knowledge_rag.cli add-text --title "Notes" --text "..."
    python -m knowledge_rag.cli add-file ./handbook.pdf
    python -m knowledge_rag.cli add-url https://example.com/article
    python -m knowledge_rag.cli list --status indexed
    python -m knowledge_rag.cli chunks <document_id>
    python -m knowledge_rag.cli search "how are chunks sized?" --top-k 3
    python -m knowledge_rag.cli reindex <document_id>
    python -m knowledge_rag.cli delete <document_id>
    python -m knowledge_rag.cli stats

Every command works on one collection (``--collection``, default
``default``).  Indexing commands print each progress stage as it happens.
The CLI uses the same wiring as the API (``build_knowledge_service``).
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Awaitable, Callable

from knowledge_rag.config.loader import settings_from_config
from knowledge_rag.models.knowledge import DocumentStatus, IndexingResult
from knowledge_rag.services.knowledge_service import KnowledgeService
from knowledge_rag.utils.errors import KnowledgeBaseError
from knowledge_rag.utils.logging import configure_logging

_DEFAULT_COLLECTION = "default"


def _print_progress(stage: str, percent: float) -> None:
    print(f"  [{percent:5.1f}%] {stage}")


def _print_result(result: IndexingResult) -> None:
    print("\nIndexing complete:")
    print(f"  Document ID: {result.document_id}")
    print(f"  Status:      {result.status.value}")
    print(f"  Chunks:      {result.chunk_count}")
    print(f"  Time:        {result.processing_time:.2f}s")


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


async def _handle_add_text(args: argparse.Namespace, service: KnowledgeService) -> int:
    text = args.text if args.text is not None else sys.stdin.read()
    print(f"Indexing text: {args.title}")
    result = await service.add_text(
        args.collection, args.title, text, on_progress=_print_progress
    )
    _print_result(result)
    return 0


async def _handle_add_file(args: argparse.Namespace, service: KnowledgeService) -> int:
    print(f"Indexing file: {args.path}")
    result = await service.add_file(
        args.collection, args.path, title=args.title, on_progress=_print_progress
    )
    _print_result(result)
    return 0


async def _handle_add_url(args: argparse.Namespace, service: KnowledgeService) -> int:
    print(f"Indexing URL: {args.url}")
    result = await service.add_url(
        args.collection, args.url, title=args.title, on_progress=_print_progress
    )
    _print_result(result)
    return 0


async def _handle_list(args: argparse.Namespace, service: KnowledgeService) -> int:
    status = DocumentStatus(args.status) if args.status else None
    documents = await service.list_documents(args.collection, status=status)
    if not documents:
        print(f"No documents in collection '{args.collection}'.")
        return 0

    print(f"{'ID':<34} {'STATUS':<11} {'KIND':<5} {'CHUNKS':>6}  TITLE")
    for doc in documents:
        print(
            f"{doc.id:<34} {doc.status.value:<11} {doc.source_kind.value:<5} "
            f"{doc.chunk_count:>6}  {doc.title}"
        )
        if doc.error_message:
            print(f"{'':<34} error: {doc.error_message}")
    print(f"\n{len(documents)} document(s)")
    return 0


async def _handle_chunks(args: argparse.Namespace, service: KnowledgeService) -> int:
    document = await service.get_document(args.document_id)
    chunks = await service.get_document_chunks(args.document_id)
    print(f"{document.title} ({len(chunks)} chunks)")
    for chunk in chunks:
        location = ""
        if "page_number" in chunk.metadata:
            location = f" page {chunk.metadata['page_number']}"
        elif "section" in chunk.metadata:
            location = f" section '{chunk.metadata['section']}'"
        print(
            f"\n--- #{chunk.chunk_index} [{chunk.start_offset}:{chunk.end_offset}]"
            f" ~{chunk.token_count} tokens{location}"
        )
        print(chunk.content)
    return 0


async def _handle_delete(args: argparse.Namespace, service: KnowledgeService) -> int:
    await service.delete_document(args.document_id)
    print(f"Deleted document {args.document_id}")
    return 0


async def _handle_reindex(args: argparse.Namespace, service: KnowledgeService) -> int:
    print(f"Reindexing document: {args.document_id}")
    result = await service.reindex_document(args.document_id, on_progress=_print_progress)
    _print_result(result)
    return 0


async def _handle_search(args: argparse.Namespace, service: KnowledgeService) -> int:
    overrides: dict[str, object] = {}
    if args.top_k is not None:
        overrides["top_k"] = args.top_k
    if args.min_score is not None:
        overrides["min_score"] = args.min_score
    options = service.search_defaults.model_copy(update=overrides)

    results = await service.search(args.collection, args.query, options)
    if not results:
        print("No results.")
        return 0

    for rank, result in enumerate(results, start=1):
        print(
            f"\n{rank}. {result.document_title} "
            f"(score {result.score:.3f}, chunk #{result.chunk_index})"
        )
        if result.metadata.get("source_uri"):
            print(f"   source: {result.metadata['source_uri']}")
        if result.text:
            print(f"   {result.text}")
    return 0


async def _handle_stats(args: argparse.Namespace, service: KnowledgeService) -> int:
    stats = await service.get_stats(args.collection)
    print(f"Collection '{stats.collection_id}'")
    print("=" * 40)
    print(f"  Documents:   {stats.document_count}")
    print(f"  Chunks:      {stats.chunk_count}")
    print(f"  Embeddings:  {stats.embedding_count}")
    print(f"  Vectors:     {stats.vector_count}")
    if stats.documents_by_status:
        print("\n  Documents by status:")
        for status, count in sorted(stats.documents_by_status.items()):
            print(f"    {status:<12} {count}")
    return 0


_HANDLERS: dict[str, Callable[[argparse.Namespace, KnowledgeService], Awaitable[int]]] = {
    "add-text": _handle_add_text,
    "add-file": _handle_add_file,
    "add-url": _handle_add_url,
    "list": _handle_list,
    "chunks": _handle_chunks,
    "delete": _handle_delete,
    "reindex": _handle_reindex,
    "search": _handle_search,
    "stats": _handle_stats,
}


async def run_command(args: argparse.Namespace, service: KnowledgeService) -> int:
    """Initialise *service*, run the parsed command, and close the service.

    Knowledge-base errors are printed to stderr and turned into exit code 1.
    """
    await service.initialize()
    try:
        return await _HANDLERS[args.command](args, service)
    except KnowledgeBaseError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        await service.close()


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the knowledge base CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m knowledge_rag.cli",
        description="Index documents into a knowledge collection and search it.",
    )
    parser.add_argument(
        "--collection",
        "-c",
        default=_DEFAULT_COLLECTION,
        help=f"Collection (notebook) id (default: {_DEFAULT_COLLECTION})",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Show INFO-level logs"
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # -- add-text --
    text_parser = subparsers.add_parser("add-text", help="Index pasted text")
    text_parser.add_argument("--title", required=True, help="Document title")
    text_parser.add_argument("--text", help="Text to index (read from stdin if omitted)")

    # -- add-file --
    file_parser = subparsers.add_parser(
        "add-file", help="Index a PDF, DOCX, PPTX, Markdown, text or HTML file"
    )
    file_parser.add_argument("path", help="Path to the file")
    file_parser.add_argument("--title", help="Override the extracted title")

    # -- add-url --
    url_parser = subparsers.add_parser("add-url", help="Fetch and index a web page")
    url_parser.add_argument("url", help="http(s) URL")
    url_parser.add_argument("--title", help="Override the extracted title")

    # -- list --
    list_parser = subparsers.add_parser("list", help="List documents")
    list_parser.add_argument(
        "--status",
        choices=[s.value for s in DocumentStatus],
        help="Only show documents in this status",
    )

    # -- chunks --
    chunks_parser = subparsers.add_parser("chunks", help="Show a document's chunks")
    chunks_parser.add_argument("document_id")

    # -- delete --
    delete_parser = subparsers.add_parser("delete", help="Delete a document")
    delete_parser.add_argument("document_id")

    # -- reindex --
    reindex_parser = subparsers.add_parser(
        "reindex", help="Rebuild a document's chunks and vectors"
    )
    reindex_parser.add_argument("document_id")

    # -- search --
    search_parser = subparsers.add_parser("search", help="Semantic search")
    search_parser.add_argument("query", help="Search query")
    search_parser.add_argument("--top-k", type=int, dest="top_k", help="Maximum results")
    search_parser.add_argument(
        "--min-score", type=float, dest="min_score", help="Minimum score (0..1)"
    )

    # -- stats --
    subparsers.add_parser("stats", help="Show collection statistics")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point: parse arguments, wire the service, run the command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    app_settings = settings_from_config()
    configure_logging(log_level="INFO" if args.verbose else "WARNING")

    # Deferred so --help does not pay for chromadb/fastapi imports.
    from knowledge_rag.main import build_knowledge_service

    service = build_knowledge_service(app_settings)
    sys.exit(asyncio.run(run_command(args, service)))


if __name__ == "__main__":
    main()
