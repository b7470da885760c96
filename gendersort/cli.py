from __future__ import annotations

import argparse
import asyncio
import logging
import mimetypes
import sys
from pathlib import Path
from typing import List, Sequence

from dotenv import load_dotenv

from .api.client import SorterHttpClient
from .api.config_loader import DEFAULT_CONFIG_PATH, load_config
from .api.factory import build_session
from .api.session import Session, SessionState
from .archive.builder import DEFAULT_ARCHIVE_NAME
from .pipeline.types import ImageItem, ProgressSnapshot


def collect_items(directory: Path, recursive: bool = False) -> List[ImageItem]:
    pattern = "**/*" if recursive else "*"
    items: List[ImageItem] = []
    for path in sorted(directory.glob(pattern)):
        if not path.is_file():
            continue
        media_type, _ = mimetypes.guess_type(path.name)
        items.append(
            ImageItem(
                filename=path.name,
                data=path.read_bytes(),
                media_type=media_type or "application/octet-stream",
            )
        )
    return items


def _print_progress(snapshot: ProgressSnapshot) -> None:
    counts = snapshot.counts
    print(
        f"[gendersort] {snapshot.processed}/{snapshot.total} ({snapshot.percent}%) "
        f"boys={counts['male']} girls={counts['female']} unsorted={counts['unknown']}"
    )


async def run_local(session: Session, items: Sequence[ImageItem], output: Path) -> int:
    def _listener(message: dict[str, object]) -> None:
        if message.get("event") == "progress":
            _print_progress(session.snapshot())

    session.add_listener(_listener)
    try:
        await session.initialize()
        if session.state is SessionState.ERROR:
            print(f"[gendersort] {session.message}")
            return 2

        result = await session.run(items)
        if not result.accepted:
            print(f"[gendersort] {result.message}")
            return 1
        if result.skipped_count:
            print(f"[gendersort] Skipped {result.skipped_count} non-image file(s)")

        if session.state is SessionState.BUILD_FAILED:
            print(f"[gendersort] {session.message}; retrying archive build")
            await session.retry_build()

        archive = session.download()
        if archive is None:
            print(f"[gendersort] {session.message or 'No archive was produced'}")
            return 1
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(archive.data)
        print(f"[gendersort] Wrote {output} ({archive.size} bytes, {len(archive.entries)} files)")
        for name, reason in session.diagnostics.items():
            print(f"[gendersort]   unsorted {name}: {reason}")
        return 0
    finally:
        session.remove_listener(_listener)
        session.close()


def run_remote(client: SorterHttpClient, items: Sequence[ImageItem], output: Path) -> int:
    accepted = client.submit(items)
    print(
        f"[gendersort] Uploaded batch accepted={accepted.get('accepted')} "
        f"skipped={accepted.get('skipped')}"
    )
    status = client.wait_until_settled()
    if status.get("state") != SessionState.READY.value:
        print(f"[gendersort] Batch finished in state={status.get('state')}: {status.get('message')}")
        return 1
    data = client.download()
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(data)
    print(f"[gendersort] Wrote {output} ({len(data)} bytes)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Sort a folder of photos into Boys/Girls/Unsorted and package them as a zip"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    local = subparsers.add_parser("local", help="Classify images in-process")
    local.add_argument(
        "--config",
        type=str,
        default=str(DEFAULT_CONFIG_PATH),
        help=f"Path to JSON configuration file (default: {DEFAULT_CONFIG_PATH})",
    )

    remote = subparsers.add_parser("remote", help="Upload images to a running sorting server")
    remote.add_argument("--url", required=True, help="Base URL of the sorting server")
    remote.add_argument("--timeout", type=float, default=60.0, help="HTTP timeout in seconds")

    for sub in (local, remote):
        sub.add_argument("directory", type=Path, help="Directory containing the images")
        sub.add_argument(
            "-o",
            "--output",
            type=Path,
            default=Path(DEFAULT_ARCHIVE_NAME),
            help=f"Where to write the archive (default: {DEFAULT_ARCHIVE_NAME})",
        )
        sub.add_argument("--recursive", action="store_true", help="Include sub-directories")
        sub.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s [%(name)s] %(message)s",
    )

    if not args.directory.is_dir():
        print(f"[gendersort] Not a directory: {args.directory}")
        return 1
    items = collect_items(args.directory, recursive=args.recursive)

    if args.command == "remote":
        client = SorterHttpClient(base_url=args.url, timeout=args.timeout)
        try:
            return run_remote(client, items, args.output)
        except RuntimeError as exc:
            print(f"[gendersort] {exc}")
            return 1

    try:
        cfg = load_config(args.config if Path(args.config).exists() else None)
    except (OSError, ValueError) as exc:
        print(f"[gendersort] Failed to load configuration: {exc}")
        return 1
    session = build_session(cfg)
    try:
        return asyncio.run(run_local(session, items, args.output))
    except KeyboardInterrupt:
        print("[gendersort] Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
