"""Argparse CLI over the ragcore service graph.

Usage::

    python -m ragcore.cli add ./manual.pdf --org acme --collection handbooks
    python -m ragcore.cli process <document-id> [--force]
    python -m ragcore.cli status <document-id>
    python -m ragcore.cli search "contact information" --limit 3 --threshold 0.5
    python -m ragcore.cli stats
"""

from __future__ import annotations

import argparse
import asyncio
import json
import mimetypes
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ragcore.config.settings import Settings
from ragcore.main import build_services, initialize_storage
from ragcore.models.chunk import ChunkType
from ragcore.models.document import DocumentType, NewDocument
from ragcore.models.retrieval import SearchFilters, SearchOptions, SearchScope
from ragcore.utils.errors import RagCoreError
from ragcore.utils.logging import configure_logging

# mimetypes does not know every format the extractors handle.
_EXTRA_MIME_TYPES = {
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
}


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _guess_mime_type(path: Path) -> str:
    mime_type = _EXTRA_MIME_TYPES.get(path.suffix.lower())
    if mime_type is None:
        mime_type, _ = mimetypes.guess_type(path.name)
    return mime_type or "application/octet-stream"


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


async def _handle_add(args: argparse.Namespace, components: dict[str, Any]) -> int:
    path = Path(args.file).expanduser().resolve()
    if not path.is_file():
        print(json.dumps({"error": "FileNotFound", "detail": str(path)}), file=sys.stderr)
        return 1

    try:
        new_document = NewDocument(
            organization_id=args.org,
            collection_id=args.collection,
            title=args.title or path.stem,
            filename=path.name,
            storage_locator=str(path),
            file_size=path.stat().st_size,
            mime_type=args.mime_type or _guess_mime_type(path),
            document_type=DocumentType(args.type),
            language=args.language,
            tags=args.tag or [],
        )
    except PydanticValidationError as exc:
        print(
            json.dumps({"error": "ValidationError", "detail": exc.errors()}, default=str),
            file=sys.stderr,
        )
        return 1

    document = await components["repository"].create(new_document)
    _print_json(document.model_dump(mode="json", exclude={"extracted_text"}))
    return 0


async def _handle_process(args: argparse.Namespace, components: dict[str, Any]) -> int:
    outcome = await components["pipeline"].start_processing(args.document_id, force=args.force)
    _print_json(outcome.model_dump(mode="json"))
    return 0


async def _handle_status(args: argparse.Namespace, components: dict[str, Any]) -> int:
    report = await components["pipeline"].get_status(args.document_id)
    _print_json(report.model_dump(mode="json"))
    return 0


async def _handle_search(args: argparse.Namespace, components: dict[str, Any]) -> int:
    options = SearchOptions(
        limit=args.limit,
        threshold=args.threshold,
        filters=SearchFilters(
            content_types=[ChunkType(value) for value in args.type or []],
            tags=args.tag or [],
        ),
        boost_recent=args.boost_recent,
    )
    scope = SearchScope(
        organization_id=args.org,
        collection_ids=args.collection or [],
        document_ids=args.document or [],
    )
    result = await components["retrieval_engine"].search(args.query, scope=scope, options=options)
    _print_json(
        {
            "query": result.query,
            "results": [
                {
                    "document_id": hit.chunk.document_id,
                    "chunk_index": hit.chunk.chunk_index,
                    "chunk_type": hit.chunk.chunk_type.value,
                    "score": round(hit.score, 4),
                    "similarity": round(hit.similarity_score, 4),
                    "matched_keywords": hit.matched_keywords,
                    "preview": hit.content_preview,
                }
                for hit in result.results
            ],
            "metadata": result.metadata.model_dump(mode="json"),
        }
    )
    return 0


async def _handle_stats(args: argparse.Namespace, components: dict[str, Any]) -> int:
    documents = await components["repository"].status_counts()
    chunks_by_type = await components["chunk_store"].count_by_type()
    _print_json(
        {
            "documents": documents,
            "total_documents": sum(documents.values()),
            "chunks_by_type": chunks_by_type,
            "total_chunks": sum(chunks_by_type.values()),
            "providers": components["provider_registry"],
        }
    )
    return 0


_HANDLERS = {
    "add": _handle_add,
    "process": _handle_process,
    "status": _handle_status,
    "search": _handle_search,
    "stats": _handle_stats,
}


async def _run(args: argparse.Namespace, app_settings: Settings) -> int:
    try:
        components = build_services(app_settings)
        await initialize_storage(components)
        return await _HANDLERS[args.command](args, components)
    except RagCoreError as exc:
        print(
            json.dumps({"error": type(exc).__name__, "detail": exc.message}),
            file=sys.stderr,
        )
        return 1


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the ragcore CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m ragcore.cli",
        description="Ingest documents and search their chunks.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # -- add --
    add_parser = subparsers.add_parser("add", help="Register a local file as a document")
    add_parser.add_argument("file", help="Path to the file")
    add_parser.add_argument("--org", required=True, help="Owning organization id")
    add_parser.add_argument("--collection", required=True, help="Collection id")
    add_parser.add_argument("--title", help="Title (default: file name without extension)")
    add_parser.add_argument(
        "--type",
        default=DocumentType.OTHER.value,
        choices=[t.value for t in DocumentType],
        help="Document classification",
    )
    add_parser.add_argument("--language", default="en", help="Language code (default: en)")
    add_parser.add_argument("--tag", action="append", help="Tag (repeatable)")
    add_parser.add_argument("--mime-type", dest="mime_type", help="Override MIME detection")

    # -- process --
    process_parser = subparsers.add_parser("process", help="Process a document")
    process_parser.add_argument("document_id")
    process_parser.add_argument(
        "--force", action="store_true", help="Reprocess an already completed document"
    )

    # -- status --
    status_parser = subparsers.add_parser("status", help="Show processing progress")
    status_parser.add_argument("document_id")

    # -- search --
    search_parser = subparsers.add_parser("search", help="Similarity search")
    search_parser.add_argument("query")
    search_parser.add_argument("--limit", type=int, default=10, help="1-50 (default: 10)")
    search_parser.add_argument(
        "--threshold", type=float, default=0.7, help="0-1 (default: 0.7)"
    )
    search_parser.add_argument(
        "--type",
        action="append",
        choices=[t.value for t in ChunkType],
        help="Chunk type filter (repeatable)",
    )
    search_parser.add_argument("--tag", action="append", help="Tag filter (repeatable)")
    search_parser.add_argument("--org", help="Organization scope")
    search_parser.add_argument("--collection", action="append", help="Collection scope")
    search_parser.add_argument("--document", action="append", help="Document scope")
    search_parser.add_argument(
        "--boost-recent", action="store_true", dest="boost_recent", help="Favour newer chunks"
    )

    # -- stats --
    subparsers.add_parser("stats", help="Show document and chunk counts")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point: parse, build services, dispatch, exit with the handler's code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    app_settings = Settings()
    configure_logging(
        log_level=app_settings.log_level,
        json_output=(app_settings.app_env == "production"),
        stream=sys.stderr,
    )
    sys.exit(asyncio.run(_run(args, app_settings)))
