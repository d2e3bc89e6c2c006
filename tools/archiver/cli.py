"""CLI entry-point for the 2ch archiver."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from datetime import datetime, timezone

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .archiver import Archiver
from .config import ArchiverConfig, DiskConfig, DvachConfig, S3Config
from .db import ThreadStore
from .errors import ArchiverError, FetchError, InvalidBoardError, StoreError
from .replicate import Archive, copy_board, copy_thread
from .storage import DiskContentStore

console = Console()
logger = logging.getLogger("archiver.cli")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )
    # Suppress noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("s3transfer").setLevel(logging.WARNING)


def _print_stats(stats: dict[str, int], title: str = "Dump Summary") -> None:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Metric", style="bold")
    table.add_column("Count", justify="right")
    for key, val in stats.items():
        table.add_row(key.capitalize(), str(val))
    console.print(table)


def _install_stop_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def handler() -> None:
        logger.info("Shutdown signal received")
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass


@click.group()
@click.option("--db", "db_root", envvar="ARCHIVE_ROOT", default=".", show_default=True,
              type=click.Path(file_okay=False), help="Archive root directory")
@click.option("--storage-driver", envvar="STORAGE_DRIVER", default="disk", show_default=True,
              type=click.Choice(["disk", "s3"]), help="Where attachments are stored")
@click.option("--api-base", envvar="DVACH_API_BASE", default="https://2ch.hk", help="Imageboard base URL")
@click.option("--timeout", envvar="DVACH_TIMEOUT", default=30.0, type=float, help="HTTP timeout in seconds")
@click.option("--max-retries", envvar="DVACH_MAX_RETRIES", default=1, type=click.IntRange(min=1),
              show_default=True, help="HTTP attempts per request (1 = no retries)")
@click.option("--concurrency", envvar="ARCHIVE_CONCURRENCY", default=8, type=click.IntRange(min=1),
              help="Max threads synced at once per board")
@click.option("--s3-endpoint", envvar="S3_ENDPOINT", default="http://localhost:9000", help="MinIO/S3 endpoint URL")
@click.option("--s3-access-key", envvar="S3_ACCESS_KEY", default="minioadmin", help="S3 access key")
@click.option("--s3-secret-key", envvar="S3_SECRET_KEY", default="minioadmin", help="S3 secret key")
@click.option("--s3-bucket", envvar="S3_BUCKET", default="archiver", help="S3 bucket name")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, **kwargs: object) -> None:
    """2ch Archiver – keep a local copy of imageboard threads.

    Fetches threads and attachments from the 2ch JSON API, flags posts that
    disappear and stores every attachment once by content hash.
    """
    _setup_logging(bool(kwargs.pop("verbose")))
    ctx.ensure_object(dict)
    ctx.obj["cfg"] = ArchiverConfig(
        api=DvachConfig(
            api_base=kwargs["api_base"],  # type: ignore[arg-type]
            timeout=kwargs["timeout"],  # type: ignore[arg-type]
            max_retries=kwargs["max_retries"],  # type: ignore[arg-type]
        ),
        disk=DiskConfig(root=kwargs["db_root"]),  # type: ignore[arg-type]
        s3=S3Config(
            endpoint=kwargs["s3_endpoint"],  # type: ignore[arg-type]
            access_key=kwargs["s3_access_key"],  # type: ignore[arg-type]
            secret_key=kwargs["s3_secret_key"],  # type: ignore[arg-type]
            bucket=kwargs["s3_bucket"],  # type: ignore[arg-type]
        ),
        storage_driver=kwargs["storage_driver"],  # type: ignore[arg-type]
        max_concurrency=kwargs["concurrency"],  # type: ignore[arg-type]
    )


# ─── Commands ────────────────────────────────────────────────────


async def _dump(cfg: ArchiverConfig, board: str, thread_id: int | None) -> int:
    async with Archiver(cfg, show_progress=True) as arc:
        if thread_id is not None:
            try:
                result = await arc.scheduler.sync_thread_once(board, thread_id)
            except ArchiverError as exc:
                console.print(f"[red]✗[/red] Thread /{board}/{thread_id} failed: {exc}")
                return 1
            console.print(f"[green]✓[/green] Thread /{board}/{thread_id} archived")
            _print_stats({
                "discovered": int(result.discovered),
                "posts": result.added,
                "deleted": result.removed_flagged,
                "attachments": result.attachments,
                "errors": result.attachment_failures,
            })
            return 0

        try:
            report = await arc.scheduler.sync_board_once(board)
        except FetchError as exc:
            console.print(f"[red]✗[/red] Could not list threads of /{board}/: {exc}")
            return 1
        console.print(f"[green]✓[/green] Archived {len(report.results)}/{report.total} threads from /{board}/")
        _print_stats(report.stats())
        return 0


@cli.command()
@click.argument("board")
@click.argument("thread_id", type=int, required=False)
@click.pass_context
def dump(ctx: click.Context, board: str, thread_id: int | None) -> None:
    """Archive a board (every live thread) or a single thread once.

    Example: archiver dump b 123456789
    """
    sys.exit(asyncio.run(_dump(ctx.obj["cfg"], board, thread_id)))


async def _monitor(cfg: ArchiverConfig, board: str, thread_id: int | None, interval: float) -> None:
    stop = asyncio.Event()
    _install_stop_handlers(stop)
    async with Archiver(cfg) as arc:
        if thread_id is None:
            await arc.scheduler.monitor_board(board, interval, stop)
        else:
            await arc.scheduler.monitor_thread(board, thread_id, interval, stop)


@cli.command()
@click.argument("board")
@click.argument("thread_id", type=int, required=False)
@click.option("--interval", default=0, type=click.FloatRange(min=0), show_default=True,
              help="Seconds between polls (0 = immediately)")
@click.pass_context
def monitor(ctx: click.Context, board: str, thread_id: int | None, interval: float) -> None:
    """Keep re-archiving a board, or a thread until it disappears.

    Example: archiver monitor b --interval 60
    """
    target = f"/{board}/" if thread_id is None else f"/{board}/{thread_id}"
    console.print(f"[bold]Monitoring [cyan]{target}[/cyan] every {interval:g}s...[/bold]")
    asyncio.run(_monitor(ctx.obj["cfg"], board, thread_id, interval))


@cli.command()
@click.argument("board")
@click.argument("thread_id", type=int, required=False)
@click.option("--from", "src_root", required=True, type=click.Path(exists=True, file_okay=False),
              help="Source archive root")
@click.option("--to", "dst_root", required=True, type=click.Path(file_okay=False), help="Destination archive root")
def copy(board: str, thread_id: int | None, src_root: str, dst_root: str) -> None:
    """Copy archived threads and their attachments into another archive.

    Example: archiver copy b --from ./old --to ./new
    """
    src = Archive(ThreadStore(src_root), DiskContentStore(src_root))
    dst = Archive(ThreadStore(dst_root), DiskContentStore(dst_root))
    try:
        if thread_id is None:
            report = copy_board(src, dst, board)
        else:
            report = copy_thread(src, dst, board, thread_id)
    except StoreError as exc:
        console.print(f"[red]✗[/red] {exc}")
        sys.exit(1)
    _print_stats(
        {"threads": report.threads, "attachments": report.attachments, "missing": len(report.missing)},
        title="Copy Summary",
    )


@cli.command(name="list")
@click.argument("board")
@click.pass_context
def list_threads(ctx: click.Context, board: str) -> None:
    """List the archived threads of a board.

    Example: archiver list b
    """
    store = ThreadStore(ctx.obj["cfg"].disk.root)
    try:
        thread_ids = store.list_thread_ids(board)
    except InvalidBoardError as exc:
        console.print(f"[red]✗[/red] {exc}")
        sys.exit(1)
    if thread_ids is None:
        console.print(f"[red]✗[/red] Board /{board}/ has not been archived")
        sys.exit(1)

    table = Table(title=f"/{board}/ Archive", show_header=True, header_style="bold cyan")
    table.add_column("No", style="bold", justify="right")
    table.add_column("Subject", max_width=40)
    table.add_column("Posts", justify="right")
    table.add_column("Deleted", justify="right")
    table.add_column("Files", justify="right")
    table.add_column("Last Post")
    for thread_id in sorted(thread_ids):
        snapshot = store.read(board, thread_id)
        if snapshot is None or not snapshot.posts:
            table.add_row(str(thread_id), "", "0", "0", "0", "")
            continue
        op = snapshot.posts[0]
        last = datetime.fromtimestamp(snapshot.posts[-1].timestamp, tz=timezone.utc)
        table.add_row(
            str(thread_id),
            op.subject[:40],
            str(len(snapshot.posts)),
            str(sum(p.deleted for p in snapshot.posts)),
            str(sum(len(p.attachments) for p in snapshot.posts)),
            f"{last:%Y-%m-%d %H:%M}",
        )
    console.print(table)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
