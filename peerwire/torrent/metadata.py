import math


class TorrentMetadata:
    __slots__ = (
        "announce",
        "piece_length",
        "pieces",
        "info_hash",
        "total_length",
        "name",
        "peers",
    )

    def __init__(
        self,
        announce: str,
        piece_length: int,
        pieces: list[bytes],
        info_hash: bytes,
        total_length: int,
        name: str,
        peers: list[tuple[str, int]] | None = None,
    ):
        if piece_length <= 0:
            raise ValueError(f"Invalid piece length: {piece_length}")
        if len(info_hash) != 20:
            raise ValueError(f"info_hash must be 20 bytes, got {len(info_hash)}")
        if any(len(digest) != 20 for digest in pieces):
            raise ValueError("Every piece digest must be 20 bytes")
        expected = math.ceil(total_length / piece_length)
        if expected != len(pieces):
            raise ValueError(
                f"{total_length} bytes at piece length {piece_length} needs {expected} pieces, got {len(pieces)}"
            )

        self.announce = announce
        self.piece_length = piece_length
        self.pieces = pieces
        self.info_hash = info_hash
        self.total_length = total_length
        self.name = name
        self.peers = list(peers) if peers else []

    @property
    def num_pieces(self) -> int:
        return len(self.pieces)

    def piece_bounds(self, index: int) -> tuple[int, int]:
        """Byte range ``[begin, end)`` of piece ``index`` within the content."""
        if not 0 <= index < len(self.pieces):
            raise IndexError(f"Piece index {index} out of range (0..{len(self.pieces) - 1})")
        begin = index * self.piece_length
        end = min(begin + self.piece_length, self.total_length)
        return begin, end

    def piece_size(self, index: int) -> int:
        begin, end = self.piece_bounds(index)
        return end - begin
