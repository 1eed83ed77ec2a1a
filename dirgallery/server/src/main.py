"""
DirGallery main entry point.
Serves a directory as a gallery, or runs one-off cache maintenance commands.
"""
import argparse
import asyncio
import logging
import shutil
import socket
import sys
from pathlib import Path

from . import config
from .services.gallery import GalleryService
from .services.scan import Scanner, summarize

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )
    # watchdog logs every inotify event at DEBUG
    logging.getLogger("watchdog").setLevel(logging.WARNING)


def find_available_port(host: str, start_port: int, attempts: int = 100) -> int:
    """
    First port in [start_port, start_port + attempts) that can be bound.
    Raises:
        OSError: If none of them is free
    """
    for port in range(start_port, start_port + attempts):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind((host, port))
            except OSError:
                continue
            return port
    raise OSError(f"No available port found in {start_port}-{start_port + attempts - 1}")


def find_cache_dirs(directory: Path) -> list[Path]:
    """All gallery cache directories under directory, not descending into hidden or dependency dirs."""
    found = []
    try:
        entries = sorted(directory.iterdir())
    except OSError as e:
        logger.warning(f"Unable to scan directory {directory}: {e}")
        return found

    for entry in entries:
        if not entry.is_dir() or entry.is_symlink():
            continue
        if entry.name == config.CACHE_DIR_NAME:
            found.append(entry)
        elif not entry.name.startswith(config.HIDDEN_PREFIX) and entry.name != config.DEPENDENCY_DIR_NAME:
            found.extend(find_cache_dirs(entry))
    return found


def cmd_up(args) -> int:
    """Run in API server mode."""
    import uvicorn

    from .api.api import create_app

    root = Path(args.directory).resolve()
    if not root.is_dir():
        print(f"Error: not a directory: {root}", file=sys.stderr)
        return 1

    port = find_available_port(args.host, args.port)
    if port != args.port:
        print(f"Port {args.port} is in use, using {port}")

    gallery = GalleryService(root)
    app = create_app(gallery, watch=not args.no_watch)

    print("=" * 60)
    print("DirGallery")
    print("=" * 60)
    print(f"Serving:  {root}")
    print(f"Gallery:  http://{args.host}:{port}")
    print(f"API docs: http://{args.host}:{port}/docs")
    print()

    uvicorn.run(
        app,
        host=args.host,
        port=port,
        log_level="debug" if args.verbose else "info"
    )
    return 0


def cmd_scan(args) -> int:
    """Scan a directory and print what a gallery of it would contain."""
    root = Path(args.directory).resolve()
    print(f"Scanning directory: {root}")

    scanner = Scanner()
    descriptors = scanner.scan(root)
    summary = summarize(descriptors)

    print()
    print("Scan Results:")
    print(f"  Total media files: {summary['total']}")
    print(f"  Images: {summary['images']}")
    print(f"  Videos: {summary['videos']}")
    print(f"  Directories: {len(summary['directories'])}")
    if scanner.errors:
        print(f"  Unreadable paths: {len(scanner.errors)}")

    if summary['directories']:
        print()
        print("Directories with media:")
        for directory, count in summary['directories'].items():
            print(f"  {'Root' if directory == '.' else directory}: {count} files")
    return 0


def cmd_cleanup(args) -> int:
    """Remove thumbnails whose source files are gone."""
    root = Path(args.directory).resolve()
    gallery = GalleryService(root)

    if not gallery.store.thumbnails_dir.is_dir():
        print("No thumbnail cache found in this directory")
        return 0

    total = gallery.store.count()
    print("Cleaning up orphaned thumbnails...")
    removed = gallery.store.cleanup_orphans(root)

    print()
    print("Cleanup complete:")
    print(f"  Total thumbnails: {total}")
    print(f"  Cleaned: {removed}")
    print(f"  Remaining: {gallery.store.count()}")
    return 0


async def _rebuild(gallery: GalleryService) -> dict:
    gallery.broadcaster.bind(asyncio.get_running_loop())
    snapshot = await gallery.get_snapshot()
    await gallery.scheduler.wait_idle()
    return {
        'total': snapshot.total_count,
        'generation': gallery.generation_status(),
    }


def cmd_rescan(args) -> int:
    """Rescan a directory and generate every missing thumbnail, without serving."""
    root = Path(args.directory).resolve()
    gallery = GalleryService(root)
    gallery.ensure_dirs()

    print(f"Rescanning {root}...")
    result = asyncio.run(_rebuild(gallery))
    generation = result['generation']

    print(f"Found {result['total']} media files")
    print(f"Thumbnails generated: {generation['completed'] - generation['failed']}")
    if generation['failed']:
        print(f"Thumbnails failed: {generation['failed']}")
    return 0


def cmd_delete(args) -> int:
    """Delete every gallery cache directory below a directory."""
    search_dir = Path(args.directory).resolve()
    cache_dirs = find_cache_dirs(search_dir)

    if not cache_dirs:
        print(f"No {config.CACHE_DIR_NAME} directories found")
        return 0

    if not args.force:
        print(f"This will delete {len(cache_dirs)} {config.CACHE_DIR_NAME} directories in:")
        print(f"  {search_dir}")
        print("This includes all thumbnails and metadata files.")
        answer = input("Continue? (y/N): ")
        if answer.strip().lower() not in ('y', 'yes'):
            print("Operation cancelled")
            return 1

    deleted = 0
    for cache_dir in cache_dirs:
        try:
            shutil.rmtree(cache_dir)
        except OSError as e:
            logger.error(f"Failed to delete {cache_dir}: {e}")
            continue
        print(f"Deleted: {cache_dir}")
        deleted += 1

    print(f"Deleted {deleted} {config.CACHE_DIR_NAME} director{'y' if deleted == 1 else 'ies'}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dirgallery", description="Browsable thumbnail gallery for a local directory")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("up", help="Serve a directory as a gallery")
    p.add_argument("directory", nargs="?", default=".", help="Directory to serve (default: current)")
    p.add_argument("--host", default=config.HOST, help=f"Bind address (default: {config.HOST})")
    p.add_argument("-p", "--port", type=int, default=config.PORT, help=f"Preferred port (default: {config.PORT})")
    p.add_argument("--no-watch", action="store_true", help="Do not watch the directory for changes")
    p.set_defaults(func=cmd_up)

    p = sub.add_parser("scan", help="Scan a directory and print a summary")
    p.add_argument("directory", nargs="?", default=".")
    p.set_defaults(func=cmd_scan)

    p = sub.add_parser("rescan", help="Rescan a directory and generate missing thumbnails")
    p.add_argument("directory", nargs="?", default=".")
    p.set_defaults(func=cmd_rescan)

    p = sub.add_parser("cleanup", help="Remove thumbnails of deleted media")
    p.add_argument("directory", nargs="?", default=".")
    p.set_defaults(func=cmd_cleanup)

    p = sub.add_parser("delete", help=f"Delete all {config.CACHE_DIR_NAME} directories recursively")
    p.add_argument("directory", nargs="?", default=".")
    p.add_argument("-f", "--force", action="store_true", help="Do not ask for confirmation")
    p.set_defaults(func=cmd_delete)

    return parser


def main(argv=None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    try:
        return args.func(args)
    except Exception as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
