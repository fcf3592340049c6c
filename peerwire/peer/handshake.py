import asyncio
import os
import struct
import logging
from peerwire.common.errors import HandshakeError

logger = logging.getLogger(__name__)

PROTOCOL = b"BitTorrent protocol"
HANDSHAKE_FORMAT = "!B19s8s20s20s"  # len, pstr, reserved, info_hash, peer_id
HANDSHAKE_LENGTH = struct.calcsize(HANDSHAKE_FORMAT)
PEER_ID_PREFIX = b"-PW0001-"


def generate_peer_id() -> bytes:
    return PEER_ID_PREFIX + os.urandom(20 - len(PEER_ID_PREFIX))


class Handshake:
    __slots__ = ("info_hash", "peer_id")

    def __init__(self, info_hash: bytes, peer_id: bytes):
        if len(info_hash) != 20 or len(peer_id) != 20:
            raise ValueError("info_hash and peer_id must both be 20 bytes")
        self.info_hash = info_hash
        self.peer_id = peer_id

    def encode(self) -> bytes:
        return struct.pack(
            HANDSHAKE_FORMAT,
            len(PROTOCOL),
            PROTOCOL,
            b"\x00" * 8,
            self.info_hash,
            self.peer_id,
        )

    @classmethod
    def decode(cls, data: bytes) -> "Handshake":
        if len(data) != HANDSHAKE_LENGTH:
            raise HandshakeError(f"Handshake must be {HANDSHAKE_LENGTH} bytes, got {len(data)}")
        pstrlen, pstr, _, info_hash, peer_id = struct.unpack(HANDSHAKE_FORMAT, data)
        if pstrlen != len(PROTOCOL):
            raise HandshakeError(f"Invalid pstrlen: {pstrlen}")
        if pstr != PROTOCOL:
            raise HandshakeError(f"Invalid protocol string: {pstr!r}")
        return cls(info_hash, peer_id)


async def _send_handshake(writer: asyncio.StreamWriter, info_hash: bytes, peer_id: bytes):
    writer.write(Handshake(info_hash, peer_id).encode())
    await writer.drain()


async def _receive_handshake(reader: asyncio.StreamReader, info_hash: bytes) -> Handshake:
    try:
        data = await reader.readexactly(HANDSHAKE_LENGTH)
    except asyncio.IncompleteReadError as e:
        raise HandshakeError(f"Incomplete handshake: received {len(e.partial)} bytes") from e
    handshake = Handshake.decode(data)
    if handshake.info_hash != info_hash:
        raise HandshakeError(
            f"Info hash mismatch: expected {info_hash.hex()}, got {handshake.info_hash.hex()}"
        )
    return handshake


async def exchange_handshake(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    info_hash: bytes,
    peer_id: bytes,
    *,
    initiator: bool,
    timeout: float = 5,
) -> bytes:
    """Run the handshake in either role and return the remote peer id.

    The initiator speaks first. The responder reads first and only answers
    once the info hash checks out, so a peer asking for the wrong torrent
    never learns our id.
    """
    async with asyncio.timeout(timeout):
        if initiator:
            await _send_handshake(writer, info_hash, peer_id)
            remote = await _receive_handshake(reader, info_hash)
        else:
            remote = await _receive_handshake(reader, info_hash)
            await _send_handshake(writer, info_hash, peer_id)

    logger.debug(f"Handshake complete, remote peer_id {remote.peer_id.hex()[:16]}...")
    return remote.peer_id
