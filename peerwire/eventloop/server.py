from peerwire.common.config import DownloadConfig
from peerwire.common.errors import HandshakeError, MalformedMessageError, PieceUnavailableError
from peerwire.peer.bitfield import Bitfield
from peerwire.peer.handshake import exchange_handshake
from peerwire.peer.messages import (
    BitfieldMessage,
    Interested,
    NotInterested,
    Piece,
    Request,
    Unchoke,
    read_message,
)
from peerwire.torrent.metadata import TorrentMetadata
from peerwire.torrent.verify import verify_pieces
from pathlib import Path
import asyncio
import logging
import mmap

logger = logging.getLogger(__name__)

# largest block we will serve in one piece message
MAX_REQUEST_LENGTH = 128 * 1024


class PeerServer:
    """Seeds one file to any peer that connects and presents the right info hash."""

    __slots__ = (
        "metadata",
        "path",
        "peer_id",
        "config",
        "bitfield",
        "server",
        "file_handle",
        "file_mmap",
        "connections",
        "_requested_have",
        "_verify",
    )

    def __init__(
        self,
        metadata: TorrentMetadata,
        path: Path,
        peer_id: bytes,
        *,
        have=None,
        verify: bool = False,
        config: DownloadConfig | None = None,
    ):
        self.metadata = metadata
        self.path = Path(path)
        self.peer_id = peer_id
        self.config = config or DownloadConfig()
        self.bitfield: Bitfield = None
        self.server: asyncio.Server = None
        self.file_handle = None
        self.file_mmap: mmap.mmap = None
        self.connections: set[asyncio.Task] = set()
        self._requested_have = have
        self._verify = verify

    @property
    def port(self) -> int:
        return self.server.sockets[0].getsockname()[1]

    def _open_storage(self):
        size = self.path.stat().st_size
        if size < self.metadata.total_length:
            raise ValueError(
                f"{self.path} holds {size} bytes, torrent needs {self.metadata.total_length}"
            )
        if self.metadata.total_length == 0:
            raise ValueError("Nothing to serve for an empty torrent")

        self.file_handle = open(self.path, "rb")
        self.file_mmap = mmap.mmap(
            self.file_handle.fileno(), self.metadata.total_length, access=mmap.ACCESS_READ
        )

        num_pieces = self.metadata.num_pieces
        if self._verify:
            self.bitfield = Bitfield(verify_pieces(self.metadata, self.file_mmap))
            logger.info(
                f"Verified {self.path}: {self.bitfield.count()} of {num_pieces} pieces intact"
            )
        elif self._requested_have is not None:
            self.bitfield = Bitfield.from_indices(num_pieces, self._requested_have)
        else:
            self.bitfield = Bitfield.full(num_pieces)

    async def start(self, host: str = "0.0.0.0", port: int = 0):
        self._open_storage()
        self.server = await asyncio.start_server(self._accept, host, port)
        logger.info(
            f"Serving {self.metadata.name} on {host}:{self.port} ({self.bitfield.count()} pieces)"
        )

    async def serve_forever(self):
        await self.server.serve_forever()

    async def _accept(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        task = asyncio.current_task()
        self.connections.add(task)
        try:
            await self._handle_connection(reader, writer)
        finally:
            self.connections.discard(task)

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ):
        host, port = writer.get_extra_info("peername")[:2]
        logger.info(f"Accepting inbound connection from peer {host}:{port}")
        try:
            remote_id = await exchange_handshake(
                reader,
                writer,
                self.metadata.info_hash,
                self.peer_id,
                initiator=False,
                timeout=self.config.handshake_timeout,
            )
            logger.info(
                f"Handshake completed with inbound peer {host}:{port} (peer_id: {remote_id.hex()[:8]}...)"
            )

            writer.write(BitfieldMessage(self.bitfield.to_bytes()).encode())
            await writer.drain()

            # every connection starts choked until it says it is interested
            choked = True
            while True:
                message = await read_message(reader)
                if isinstance(message, Interested):
                    logger.debug(f"Peer {host}:{port} is interested, unchoking")
                    writer.write(Unchoke().encode())
                    await writer.drain()
                    choked = False
                elif isinstance(message, NotInterested):
                    logger.debug(f"Peer {host}:{port} is no longer interested")
                elif isinstance(message, Request):
                    if choked:
                        logger.debug(
                            f"Ignoring request for piece {message.index} from choked peer {host}:{port}"
                        )
                        continue
                    writer.write(self._read_block(message).encode())
                    await writer.drain()

        except asyncio.IncompleteReadError:
            logger.info(f"Peer {host}:{port} disconnected")
        except (HandshakeError, MalformedMessageError, PieceUnavailableError) as e:
            logger.warning(f"Closing connection to {host}:{port}: {e}")
        except (OSError, TimeoutError) as e:
            logger.warning(f"Connection to {host}:{port} failed: {e!r}")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                logger.debug(f"Error while closing connection to {host}:{port}: {e}")

    def _read_block(self, request: Request) -> Piece:
        index, begin, length = request.index, request.begin, request.length
        if not self.bitfield.has_piece(index):
            raise PieceUnavailableError(index)
        piece_size = self.metadata.piece_size(index)
        if length == 0 or length > MAX_REQUEST_LENGTH or begin + length > piece_size:
            raise PieceUnavailableError(
                index, f"bad range offset={begin} length={length} (piece is {piece_size} bytes)"
            )

        offset = index * self.metadata.piece_length + begin
        logger.debug(f"Serving piece {index}, offset {begin}, length {length}")
        return Piece(index, begin, self.file_mmap[offset : offset + length])

    async def close(self):
        if self.server is not None:
            self.server.close()
            for task in list(self.connections):
                task.cancel()
            await asyncio.gather(*self.connections, return_exceptions=True)
            await self.server.wait_closed()
            self.server = None

        if self.file_mmap is not None:
            self.file_mmap.close()
            self.file_mmap = None
        if self.file_handle is not None:
            self.file_handle.close()
            self.file_handle = None

        logger.info(f"Stopped serving {self.metadata.name}")

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.close()
