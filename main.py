#!/usr/bin/env python3
"""
PeerWire - peer-wire protocol download and seeding engine
Main entry point for the application.
"""

import asyncio
import argparse
import sys
from pathlib import Path
from peerwire.common.config import DownloadConfig, MAX_PIECE_RETRIES
from peerwire.common.errors import PeerWireError
from peerwire.common.logging import config_logging
from peerwire.eventloop.client import TorrentClient
from peerwire.eventloop.server import PeerServer
from peerwire.peer.handshake import generate_peer_id
from peerwire.torrent.parser import (
    DEFAULT_PIECE_LENGTH,
    create_torrent,
    parse_torrent_file,
    save_torrent_file,
)
from peerwire.tracker.tracker_client import TrackerClient
import logging

logger = logging.getLogger(__name__)

DEFAULT_PORT = 6881


def parse_peer(value: str) -> tuple[str, int]:
    host, sep, port = value.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise argparse.ArgumentTypeError(f"expected HOST:PORT, got {value!r}")
    return host, int(port)


def create_command(args) -> int:
    metadata = create_torrent(args.source, args.announce, args.piece_length)
    save_torrent_file(metadata, args.output)
    print(f"Torrent: {metadata.name}")
    print(f"Pieces: {metadata.num_pieces} x {metadata.piece_length / 1024:.0f} KB")
    print(f"Info hash: {metadata.info_hash.hex()}")
    print(f"Saved to: {args.output}")
    return 0


async def download_torrent(args) -> Path:
    """
    Download a torrent into a directory.

    Peers come from --peer when given, otherwise from the tracker announce.
    """
    metadata = parse_torrent_file(args.torrent)
    peer_id = generate_peer_id()

    print(f"\n{'='*60}")
    print(f"Torrent: {metadata.name}")
    print(f"Size: {metadata.total_length / (1024*1024):.2f} MB")
    print(f"Pieces: {metadata.num_pieces} x {metadata.piece_length / 1024:.0f} KB")
    print(f"{'='*60}\n")

    tracker = None
    if args.peer:
        metadata.peers = args.peer
    else:
        tracker = TrackerClient(
            metadata.announce, metadata.info_hash, peer_id, args.port, metadata.total_length
        )
        metadata.peers = await tracker.started()
    logger.info(f"Downloading from {len(metadata.peers)} peers")

    config = DownloadConfig(
        download_timeout=args.timeout,
        max_piece_retries=args.max_retries,
        max_peer_failures=args.max_peer_failures,
    )

    def report(index: int, percent: float):
        print(f"\r({percent:0.2f}%) Downloaded piece #{index}", end="", flush=True)

    client = TorrentClient(metadata, peer_id, config, on_piece=report)
    path = await client.download_to_file(args.output)
    print()

    if tracker is not None:
        await tracker.completed()
    return path


async def seed_torrent(args):
    metadata = parse_torrent_file(args.torrent)
    server = PeerServer(metadata, args.file, generate_peer_id(), verify=args.verify)
    async with server:
        await server.start(args.host, args.port)
        print(f"Seeding {metadata.name} on {args.host}:{server.port} (Ctrl-C to stop)")
        await server.serve_forever()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="PeerWire - peer-wire protocol download and seeding engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s create notes.txt -o notes.torrent --announce http://localhost:8090/announce
  %(prog)s seed notes.torrent notes.txt --port 6881
  %(prog)s download notes.torrent -o downloads/ --peer 127.0.0.1:6881
        """,
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose logging"
    )
    parser.add_argument(
        "--log-file",
        default="peerwire.log.jsonl",
        help="Name of the JSON log file under data/logs/ (default: peerwire.log.jsonl)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    create = commands.add_parser("create", help="Describe a file as a .torrent")
    create.add_argument("source", type=Path, help="File to share")
    create.add_argument("-o", "--output", type=Path, required=True, help="Where to write the .torrent")
    create.add_argument("--announce", default="", help="Tracker announce URL")
    create.add_argument(
        "--piece-length",
        type=int,
        default=DEFAULT_PIECE_LENGTH,
        help=f"Piece length in bytes (default: {DEFAULT_PIECE_LENGTH})",
    )

    download = commands.add_parser("download", help="Download a torrent")
    download.add_argument("torrent", type=Path, help="Path to the .torrent file")
    download.add_argument(
        "-o",
        "--output",
        type=Path,
        default=Path("downloads"),
        help="Output directory for downloaded files (default: downloads/)",
    )
    download.add_argument(
        "--peer",
        type=parse_peer,
        action="append",
        default=[],
        help="Peer as HOST:PORT; repeat for several. Skips the tracker.",
    )
    download.add_argument("--port", type=int, default=DEFAULT_PORT, help="Port reported to the tracker")
    download.add_argument("--timeout", type=float, default=None, help="Give up after this many seconds")
    download.add_argument(
        "--max-retries",
        type=int,
        default=MAX_PIECE_RETRIES,
        help=f"Failed attempts per piece before giving up (default: {MAX_PIECE_RETRIES})",
    )
    download.add_argument(
        "--max-peer-failures",
        type=int,
        default=1,
        help="Consecutive connection failures before a peer is dropped (default: 1)",
    )

    seed = commands.add_parser("seed", help="Serve a complete local copy")
    seed.add_argument("torrent", type=Path, help="Path to the .torrent file")
    seed.add_argument("file", type=Path, help="Local copy of the content")
    seed.add_argument("--host", default="0.0.0.0", help="Address to listen on")
    seed.add_argument("--port", type=int, default=DEFAULT_PORT, help="Port to listen on")
    seed.add_argument(
        "--verify", action="store_true", help="Hash the local copy and only advertise intact pieces"
    )
    return parser


def main(argv=None):
    """Main entry point for the PeerWire client."""
    args = build_parser().parse_args(argv)

    for path in (getattr(args, "torrent", None), getattr(args, "source", None)):
        if path is not None and not path.exists():
            print(f"Error: '{path}' not found")
            sys.exit(1)

    config_logging(args.log_file, verbose=args.verbose)

    try:
        if args.command == "create":
            create_command(args)
        elif args.command == "download":
            path = asyncio.run(download_torrent(args))
            print(f"\n✓ Download completed: {path}")
        else:
            asyncio.run(seed_torrent(args))
    except KeyboardInterrupt:
        print("\n\nShutting down...")
    except (PeerWireError, OSError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}", exc_info=True)
        print(f"\n✗ {args.command} failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
