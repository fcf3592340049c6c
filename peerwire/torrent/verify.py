import hashlib
from bitarray import bitarray
from peerwire.common.errors import IntegrityError
from peerwire.torrent.metadata import TorrentMetadata


def check_integrity(index: int, expected: bytes, buf: bytes):
    """Raise IntegrityError unless SHA-1 of ``buf`` equals ``expected``."""
    if hashlib.sha1(buf).digest() != expected:
        raise IntegrityError(index)


def verify_pieces(metadata: TorrentMetadata, data) -> bitarray:
    # data is anything sliceable by byte offset: bytes, bytearray, mmap
    held = bitarray(metadata.num_pieces, endian="big")
    held.setall(0)
    for index, expected in enumerate(metadata.pieces):
        begin, end = metadata.piece_bounds(index)
        chunk = data[begin:end]
        if len(chunk) == end - begin and hashlib.sha1(chunk).digest() == expected:
            held[index] = 1
    return held
