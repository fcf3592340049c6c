"""Peer-wire message framing.

Every message after the handshake is ``<length:u32 big-endian><id:u8><payload>``.
A zero length is a keep-alive and carries neither id nor payload. The
classes here are the closed set of messages we speak; ``decode`` and
``decode_payload`` are pure and never touch a stream, ``read_message``
is the one helper that pulls a frame off an ``asyncio.StreamReader``.
"""

import asyncio
import struct
from enum import IntEnum
from peerwire.common.errors import MalformedMessageError

# biggest frame we will buffer from a peer (2 MiB)
MAX_MESSAGE_LENGTH = 1 << 21


class MessageID(IntEnum):
    CHOKE = 0
    UNCHOKE = 1
    INTERESTED = 2
    NOT_INTERESTED = 3
    HAVE = 4
    BITFIELD = 5
    REQUEST = 6
    PIECE = 7
    CANCEL = 8


class Message:
    __slots__ = ()
    message_id: MessageID | None = None

    def payload(self) -> bytes:
        return b""

    def encode(self) -> bytes:
        if self.message_id is None:
            return struct.pack("!I", 0)
        body = self.payload()
        return struct.pack("!IB", 1 + len(body), self.message_id) + body

    def __eq__(self, other):
        if type(self) is not type(other):
            return NotImplemented
        return all(getattr(self, s) == getattr(other, s) for s in self.__slots__)

    def __hash__(self):
        return hash((type(self), tuple(getattr(self, s) for s in self.__slots__)))

    def __repr__(self):
        fields = []
        for name in self.__slots__:
            value = getattr(self, name)
            if isinstance(value, (bytes, bytearray)):
                value = f"<{len(value)} bytes>"
            fields.append(f"{name}={value}")
        return f"{type(self).__name__}({', '.join(fields)})"


class KeepAlive(Message):
    __slots__ = ()


class Choke(Message):
    __slots__ = ()
    message_id = MessageID.CHOKE


class Unchoke(Message):
    __slots__ = ()
    message_id = MessageID.UNCHOKE


class Interested(Message):
    __slots__ = ()
    message_id = MessageID.INTERESTED


class NotInterested(Message):
    __slots__ = ()
    message_id = MessageID.NOT_INTERESTED


class Have(Message):
    __slots__ = ("index",)
    message_id = MessageID.HAVE

    def __init__(self, index: int):
        self.index = index

    def payload(self) -> bytes:
        return struct.pack("!I", self.index)


class BitfieldMessage(Message):
    __slots__ = ("bitfield",)
    message_id = MessageID.BITFIELD

    def __init__(self, bitfield: bytes):
        self.bitfield = bytes(bitfield)

    def payload(self) -> bytes:
        return self.bitfield


class Request(Message):
    __slots__ = ("index", "begin", "length")
    message_id = MessageID.REQUEST

    def __init__(self, index: int, begin: int, length: int):
        self.index = index
        self.begin = begin
        self.length = length

    def payload(self) -> bytes:
        return struct.pack("!III", self.index, self.begin, self.length)


class Cancel(Message):
    __slots__ = ("index", "begin", "length")
    message_id = MessageID.CANCEL

    def __init__(self, index: int, begin: int, length: int):
        self.index = index
        self.begin = begin
        self.length = length

    def payload(self) -> bytes:
        return struct.pack("!III", self.index, self.begin, self.length)


class Piece(Message):
    __slots__ = ("index", "begin", "block")
    message_id = MessageID.PIECE

    def __init__(self, index: int, begin: int, block: bytes):
        self.index = index
        self.begin = begin
        self.block = bytes(block)

    def payload(self) -> bytes:
        return struct.pack("!II", self.index, self.begin) + self.block


_NO_PAYLOAD = {
    MessageID.CHOKE: Choke,
    MessageID.UNCHOKE: Unchoke,
    MessageID.INTERESTED: Interested,
    MessageID.NOT_INTERESTED: NotInterested,
}


def decode_payload(msg_id: int, payload: bytes) -> Message:
    """Build a message from its type byte and the bytes following it."""
    try:
        msg_id = MessageID(msg_id)
    except ValueError:
        raise MalformedMessageError(f"Unknown message id {msg_id}") from None

    if msg_id in _NO_PAYLOAD:
        if payload:
            raise MalformedMessageError(
                f"{msg_id.name} carries no payload, got {len(payload)} bytes"
            )
        return _NO_PAYLOAD[msg_id]()

    if msg_id == MessageID.HAVE:
        if len(payload) != 4:
            raise MalformedMessageError(f"HAVE payload must be 4 bytes, got {len(payload)}")
        (index,) = struct.unpack("!I", payload)
        return Have(index)

    if msg_id == MessageID.BITFIELD:
        return BitfieldMessage(payload)

    if msg_id in (MessageID.REQUEST, MessageID.CANCEL):
        if len(payload) != 12:
            raise MalformedMessageError(
                f"{msg_id.name} payload must be 12 bytes, got {len(payload)}"
            )
        cls = Request if msg_id == MessageID.REQUEST else Cancel
        return cls(*struct.unpack("!III", payload))

    # MessageID.PIECE
    if len(payload) < 8:
        raise MalformedMessageError(f"PIECE payload too short ({len(payload)} bytes)")
    index, begin = struct.unpack_from("!II", payload, 0)
    return Piece(index, begin, payload[8:])


def decode(frame: bytes) -> Message:
    """Decode one complete frame, length prefix included."""
    if len(frame) < 4:
        raise MalformedMessageError(f"Frame too short ({len(frame)} bytes)")
    (length,) = struct.unpack_from("!I", frame, 0)
    if length != len(frame) - 4:
        raise MalformedMessageError(
            f"Length prefix says {length} bytes but frame has {len(frame) - 4}"
        )
    if length == 0:
        return KeepAlive()
    return decode_payload(frame[4], frame[5:])


async def read_message(reader: asyncio.StreamReader) -> Message:
    header = await reader.readexactly(4)
    (length,) = struct.unpack("!I", header)
    if length == 0:
        return KeepAlive()
    if length > MAX_MESSAGE_LENGTH:
        raise MalformedMessageError(f"Frame of {length} bytes exceeds limit")
    body = await reader.readexactly(length)
    return decode_payload(body[0], body[1:])
