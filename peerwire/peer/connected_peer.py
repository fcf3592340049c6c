import asyncio
import logging
from peerwire.common.config import DownloadConfig
from peerwire.common.errors import MalformedMessageError
from peerwire.peer.bitfield import Bitfield
from peerwire.peer.handshake import exchange_handshake
from peerwire.peer.messages import (
    BitfieldMessage,
    Have,
    Interested,
    Message,
    Request,
    Unchoke,
    read_message,
)

logger = logging.getLogger(__name__)


class Peer:
    """One outbound connection: the stream, our view of its choke state and its bitfield."""

    __slots__ = (
        # Network State
        "host",
        "port",
        "reader",
        "writer",
        "connected",
        # Identity
        "info_hash",
        "peer_id",
        "remote_peer_id",
        # Bit protocol State
        "choked",
        "bitfield",
        "num_pieces",
        "config",
    )

    def __init__(
        self,
        host: str,
        port: int,
        info_hash: bytes,
        peer_id: bytes,
        num_pieces: int,
        config: DownloadConfig | None = None,
    ):
        self.host = host
        self.port = port
        self.reader: asyncio.StreamReader = None
        self.writer: asyncio.StreamWriter = None
        self.connected = False

        self.info_hash = info_hash
        self.peer_id = peer_id
        self.remote_peer_id: bytes = None

        self.choked = True
        self.bitfield = Bitfield.empty(num_pieces)
        self.num_pieces = num_pieces
        self.config = config or DownloadConfig()

    def __repr__(self):
        return f"Peer({self.host}:{self.port})"

    async def connect(self):
        logger.info(f"Initiating outbound connection to peer {self.host}:{self.port}")
        try:
            async with asyncio.timeout(self.config.connect_timeout):
                self.reader, self.writer = await asyncio.open_connection(
                    self.host, self.port
                )
            logger.debug(f"TCP connection established to {self.host}:{self.port}")

            self.remote_peer_id = await exchange_handshake(
                self.reader,
                self.writer,
                self.info_hash,
                self.peer_id,
                initiator=True,
                timeout=self.config.handshake_timeout,
            )
            self.connected = True
            logger.info(
                f"Handshake completed with peer {self.host}:{self.port} (peer_id: {self.remote_peer_id.hex()[:8]}...)"
            )

            await self._receive_bitfield()
        except Exception:
            await self.close()
            raise

    async def _receive_bitfield(self):
        # the first message after the handshake must advertise what the peer holds
        async with asyncio.timeout(self.config.handshake_timeout):
            message = await read_message(self.reader)
        if not isinstance(message, BitfieldMessage):
            raise MalformedMessageError(
                f"Expected bitfield from {self.host}:{self.port}, got {message!r}"
            )
        self.bitfield = Bitfield.from_bytes(message.bitfield, self.num_pieces)
        logger.info(
            f"Peer {self.host}:{self.port} has {self.bitfield.count()} of {self.num_pieces} pieces"
        )

    async def read_message(self) -> Message:
        return await read_message(self.reader)

    async def send(self, message: Message):
        self.writer.write(message.encode())
        await self.writer.drain()

    async def send_unchoke(self):
        await self.send(Unchoke())

    async def send_interested(self):
        await self.send(Interested())

    async def send_have(self, index: int):
        await self.send(Have(index))

    async def send_request(self, index: int, begin: int, length: int):
        logger.debug(
            f"Requesting block from {self.host}:{self.port}: piece {index}, offset {begin}, length {length}"
        )
        await self.send(Request(index, begin, length))

    async def close(self):
        self.connected = False
        if self.writer is None:
            return
        writer, self.writer = self.writer, None
        writer.close()
        try:
            await writer.wait_closed()
        except (OSError, asyncio.IncompleteReadError) as e:
            logger.debug(f"Error while closing connection to {self.host}:{self.port}: {e}")

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, *exc_info):
        await self.close()
