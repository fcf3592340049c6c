import asyncio
import logging
from peerwire.common.config import DownloadConfig
from peerwire.common.errors import MalformedMessageError
from peerwire.peer.connected_peer import Peer
from peerwire.peer.messages import Choke, Have, Piece, Unchoke

logger = logging.getLogger(__name__)


class PieceWork:
    __slots__ = ("index", "digest", "length")

    def __init__(self, index: int, digest: bytes, length: int):
        self.index = index
        self.digest = digest
        self.length = length

    def __repr__(self):
        return f"PieceWork(index={self.index}, length={self.length})"


class PieceResult:
    __slots__ = ("index", "buf")

    def __init__(self, index: int, buf: bytes):
        self.index = index
        self.buf = buf


class PieceProgress:
    """State of one attempt at one piece against one peer."""

    __slots__ = ("index", "peer", "buf", "downloaded", "requested", "backlog")

    def __init__(self, index: int, peer: Peer, length: int):
        self.index = index
        self.peer = peer
        self.buf = bytearray(length)
        self.downloaded = 0
        self.requested = 0
        self.backlog = 0

    async def read_message(self):
        # the only place a download worker waits on the network
        message = await self.peer.read_message()

        if isinstance(message, Unchoke):
            logger.debug(f"{self.peer} unchoked us")
            self.peer.choked = False
        elif isinstance(message, Choke):
            logger.debug(f"{self.peer} choked us")
            self.peer.choked = True
        elif isinstance(message, Have):
            self.peer.bitfield.set_piece(message.index)
        elif isinstance(message, Piece):
            self._store_block(message)
        # keep-alive, interest changes and stray requests need no action here

    def _store_block(self, message: Piece):
        if message.index != self.index:
            raise MalformedMessageError(
                f"Expected block for piece {self.index}, got piece {message.index}"
            )
        if message.begin >= len(self.buf):
            raise MalformedMessageError(
                f"Block offset {message.begin} past end of piece {self.index} ({len(self.buf)} bytes)"
            )
        end = message.begin + len(message.block)
        if end > len(self.buf):
            raise MalformedMessageError(
                f"Block of {len(message.block)} bytes at {message.begin} overruns piece {self.index}"
            )
        self.buf[message.begin : end] = message.block
        self.downloaded += len(message.block)
        self.backlog -= 1


async def attempt_download_piece(
    peer: Peer, work: PieceWork, config: DownloadConfig | None = None
) -> bytes:
    """Pull one whole piece from ``peer`` with up to ``max_backlog`` requests in flight.

    The deadline covers the entire piece, not each block; expiry raises
    ``TimeoutError`` like any other transport failure.
    """
    config = config or DownloadConfig()
    state = PieceProgress(work.index, peer, work.length)

    async with asyncio.timeout(config.piece_timeout):
        while state.downloaded < work.length:
            if not peer.choked:
                while state.backlog < config.max_backlog and state.requested < work.length:
                    block_size = min(config.block_size, work.length - state.requested)
                    await peer.send_request(work.index, state.requested, block_size)
                    state.backlog += 1
                    state.requested += block_size

            await state.read_message()

    return bytes(state.buf)
