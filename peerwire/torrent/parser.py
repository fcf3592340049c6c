import hashlib
import bencodepy
from pathlib import Path
from peerwire.torrent.metadata import TorrentMetadata
import logging

logger = logging.getLogger(__name__)

DEFAULT_PIECE_LENGTH = 256 * 1024


def _metadata_from_info(info: dict, announce: str) -> TorrentMetadata:
    info_hash = hashlib.sha1(bencodepy.encode(info)).digest()
    pieces_raw = info[b"pieces"]
    if len(pieces_raw) % 20:
        raise ValueError(f"pieces field length {len(pieces_raw)} is not a multiple of 20")
    pieces = [pieces_raw[i : i + 20] for i in range(0, len(pieces_raw), 20)]

    return TorrentMetadata(
        announce=announce,
        piece_length=info[b"piece length"],
        pieces=pieces,
        info_hash=info_hash,
        total_length=info[b"length"],
        name=info[b"name"].decode("utf-8"),
    )


def parse_torrent_file(path: Path) -> TorrentMetadata:
    logger.info(f"Parsing torrent file: {path}")

    with path.open("rb") as f:
        metainfo = bencodepy.decode(f.read())

    info = metainfo[b"info"]
    if b"files" in info:
        raise ValueError("Multi-file torrents are not supported")

    announce = metainfo.get(b"announce", b"").decode("utf-8")
    metadata = _metadata_from_info(info, announce)
    logger.info(
        f"Parsed torrent: {metadata.name} ({metadata.total_length} bytes, {metadata.num_pieces} pieces)"
    )
    return metadata


def create_torrent(
    source: Path, announce: str = "", piece_length: int = DEFAULT_PIECE_LENGTH
) -> TorrentMetadata:
    """Hash ``source`` piece by piece and describe it as a single-file torrent."""
    if piece_length <= 0:
        raise ValueError(f"Invalid piece length: {piece_length}")

    digests = []
    total_length = 0
    with source.open("rb") as f:
        while chunk := f.read(piece_length):
            digests.append(hashlib.sha1(chunk).digest())
            total_length += len(chunk)

    info = {
        b"name": source.name.encode("utf-8"),
        b"length": total_length,
        b"piece length": piece_length,
        b"pieces": b"".join(digests),
    }
    metadata = _metadata_from_info(info, announce)
    logger.info(
        f"Created torrent for {source}: {total_length} bytes in {len(digests)} pieces, info_hash {metadata.info_hash.hex()}"
    )
    return metadata


def save_torrent_file(metadata: TorrentMetadata, path: Path):
    info = {
        b"name": metadata.name.encode("utf-8"),
        b"length": metadata.total_length,
        b"piece length": metadata.piece_length,
        b"pieces": b"".join(metadata.pieces),
    }
    metainfo = {b"info": info}
    if metadata.announce:
        metainfo[b"announce"] = metadata.announce.encode("utf-8")

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as f:
        f.write(bencodepy.encode(metainfo))
    logger.info(f"Saved torrent file: {path}")
