from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Awaitable, Callable, Optional

from rich.console import Console
from rich.table import Table

from .core.archive import Archive
from .core.config import get_settings
from .core.logging import configure_logging
from .core.results import SessionNotCompleted
from .ingest.media_types import extension_for
from .ingest.metadata_schema import SchemaPath, export_schema
from .schemas import AssetView, IngestSessionView, StagedAssetView, StoredMediaView
from .services.ingest_service import IngestService

console = Console()

Command = Callable[[argparse.Namespace, Archive, IngestService], Awaitable[int]]


def main(argv: Optional[list[str]] = None) -> None:
    """The main entry point for the CLI.

    Args:
        argv: The command-line arguments.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    configure_logging(args.log_level or get_settings().log_level)
    sys.exit(args.func(args))


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI.

    Returns:
        The argument parser.
    """
    parser = argparse.ArgumentParser(description="assetvault ingest CLI")
    parser.add_argument("--log-level", default=None, help="Override the configured log level (debug, info, ...)")

    subparsers = parser.add_subparsers(dest="command")

    ingest_parser = subparsers.add_parser("ingest", help="Import a directory of metadata and media into an archive")
    ingest_parser.add_argument("base_path", help="Directory holding metadata/ and media/ subdirectories")
    _add_archive_argument(ingest_parser)
    ingest_parser.set_defaults(func=_archive_command(_cmd_ingest))

    sessions_parser = subparsers.add_parser("sessions", help="List the ingest sessions of an archive")
    _add_archive_argument(sessions_parser)
    sessions_parser.add_argument("--wait", action="store_true", help="Let resumed sessions finish before listing")
    sessions_parser.set_defaults(func=_archive_command(_cmd_sessions))

    assets_parser = subparsers.add_parser("assets", help="List the staged assets of a session")
    assets_parser.add_argument("session_id")
    assets_parser.add_argument("--page", type=int, default=0)
    _add_archive_argument(assets_parser)
    assets_parser.set_defaults(func=_archive_command(_cmd_assets))

    commit_parser = subparsers.add_parser("commit", help="Promote a completed session into permanent assets")
    commit_parser.add_argument("session_id")
    _add_archive_argument(commit_parser)
    commit_parser.set_defaults(func=_archive_command(_cmd_commit))

    cancel_parser = subparsers.add_parser("cancel", help="Discard a session and its orphaned media")
    cancel_parser.add_argument("session_id")
    _add_archive_argument(cancel_parser)
    cancel_parser.set_defaults(func=_archive_command(_cmd_cancel))

    media_parser = subparsers.add_parser("media", help="List the media stored in an archive")
    media_parser.add_argument("--page", type=int, default=0)
    _add_archive_argument(media_parser)
    media_parser.set_defaults(func=_archive_command(_cmd_media))

    asset_parser = subparsers.add_parser("asset", help="Show a committed asset")
    asset_parser.add_argument("asset_id")
    _add_archive_argument(asset_parser)
    asset_parser.set_defaults(func=_archive_command(_cmd_asset))

    schema_parser = subparsers.add_parser("schema", help="Write the JSON schema of metadata documents")
    schema_parser.add_argument("--output", default=str(SchemaPath), help="Destination path for the schema")
    schema_parser.set_defaults(func=_cmd_schema)
    return parser


def _add_archive_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--archive",
        default=None,
        help="Archive directory (defaults to ASSETVAULT_ARCHIVE_ROOT)",
    )


def _archive_command(command: Command) -> Callable[[argparse.Namespace], int]:
    """Wrap a coroutine command with archive open/close and session resumption.

    Args:
        command: The command to wrap.

    Returns:
        A synchronous callable returning the process exit code.
    """

    def _run(args: argparse.Namespace) -> int:
        async def _runner() -> int:
            settings = get_settings()
            location = Path(args.archive) if args.archive else settings.archive_root
            archive = await Archive.open(location, settings)
            service = IngestService()
            try:
                await service.add_archive(archive)
                return await command(args, archive, service)
            finally:
                await service.close()
                await archive.close()

        return asyncio.run(_runner())

    return _run


async def _cmd_ingest(args: argparse.Namespace, archive: Archive, service: IngestService) -> int:
    """Begin a session and wait for it to finish reading files.

    Args:
        args: The command-line arguments.
        archive: The open archive.
        service: The ingest service managing the archive.
    """
    base_path = Path(args.base_path).expanduser().resolve()
    if not base_path.is_dir():
        console.print(f"[red]Directory not found: {base_path}[/]")
        return 2

    operation = await service.begin_session(archive, base_path)
    with console.status(f"Importing {operation.title}"):
        await service.wait(archive, operation.id)

    console.print_json(data=IngestSessionView.from_operation(operation).model_dump(mode="json"))
    return 0


async def _cmd_sessions(args: argparse.Namespace, archive: Archive, service: IngestService) -> int:
    if args.wait:
        for operation in service.list_sessions(archive).items:
            await service.wait(archive, operation.id)

    table = Table(title=f"Ingest sessions in {archive.location}")
    for column in ("id", "title", "phase", "files", "active"):
        table.add_column(column)
    for operation in service.list_sessions(archive).items:
        view = IngestSessionView.from_operation(operation)
        total = "?" if view.total_files is None else str(view.total_files)
        table.add_row(view.id, view.title, view.phase.value, f"{view.files_read}/{total}", "yes" if view.active else "no")
    console.print(table)
    return 0


async def _cmd_assets(args: argparse.Namespace, archive: Archive, service: IngestService) -> int:
    result = await service.list_session_assets(archive, args.session_id, page=args.page)
    if not result.ok:
        console.print(f"[red]Unknown session: {args.session_id}[/]")
        return 2

    listing = result.value
    console.print_json(
        data={
            "total": listing.total,
            "page": listing.page,
            "next": listing.next,
            "prev": listing.prev,
            "items": [StagedAssetView.from_staged(staged).model_dump(mode="json") for staged in listing.items],
        }
    )
    return 0


async def _cmd_commit(args: argparse.Namespace, archive: Archive, service: IngestService) -> int:
    await service.wait(archive, args.session_id)
    try:
        result = await service.commit_session(archive, args.session_id)
    except SessionNotCompleted as exc:
        console.print(f"[red]{exc}[/]")
        return 3
    if not result.ok:
        console.print(f"[red]Commit failed: {result.error.value}[/]")
        return 2
    console.print(f"[green]Committed {len(result.value)} assets[/]")
    for asset_id in result.value:
        console.print(asset_id)
    return 0


async def _cmd_cancel(args: argparse.Namespace, archive: Archive, service: IngestService) -> int:
    result = await service.cancel_session(archive, args.session_id)
    if not result.ok:
        console.print(f"[red]Unknown session: {args.session_id}[/]")
        return 2
    console.print(f"[green]Cancelled session {args.session_id}[/]")
    return 0


async def _cmd_media(args: argparse.Namespace, archive: Archive, service: IngestService) -> int:
    media_service = service.media_service
    listing = await media_service.list_media(archive, page=args.page)

    items = []
    for record in listing.items:
        try:
            size_bytes = archive.blobs.stat(record.sha256).size_bytes
        except FileNotFoundError:
            size_bytes = None
        view = StoredMediaView(
            id=record.id,
            sha256=record.sha256,
            mime_type=record.mime_type,
            extension=extension_for(record.mime_type),
            size_bytes=size_bytes,
            rendition_uri=media_service.get_rendition_uri(archive, record),
        )
        items.append(view.model_dump(mode="json"))

    console.print_json(
        data={"total": listing.total, "page": listing.page, "next": listing.next, "prev": listing.prev, "items": items}
    )
    return 0


async def _cmd_asset(args: argparse.Namespace, archive: Archive, service: IngestService) -> int:
    asset = await service.asset_service.get_asset(archive, args.asset_id)
    if asset is None:
        console.print(f"[red]Unknown asset: {args.asset_id}[/]")
        return 2
    console.print_json(data=AssetView.from_asset(asset).model_dump(mode="json"))
    return 0


def _cmd_schema(args: argparse.Namespace) -> int:
    """Write the metadata document schema.

    Args:
        args: The command-line arguments.
    """
    path = export_schema(Path(args.output).expanduser())
    console.print(f"[green]Schema written to {path}[/]")
    return 0


if __name__ == "__main__":
    main()
