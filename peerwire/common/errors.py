"""Exceptions raised by the peer-wire engine.

Transport failures (dropped sockets, deadline expiry) are left as the
built-in ``OSError``, ``asyncio.IncompleteReadError`` and ``TimeoutError``;
a slow peer and a dead one look the same to callers.
"""


class PeerWireError(Exception):
    pass


class HandshakeError(PeerWireError):
    """The remote side sent a handshake we cannot accept."""


class MalformedMessageError(PeerWireError):
    """A frame whose length, type byte or payload is inconsistent."""


class IntegrityError(PeerWireError):
    def __init__(self, index: int):
        super().__init__(f"Piece {index} failed integrity check")
        self.index = index


class PieceUnavailableError(PeerWireError):
    def __init__(self, index: int, reason: str = "not held"):
        super().__init__(f"Piece {index} unavailable: {reason}")
        self.index = index


class TrackerError(PeerWireError):
    pass


class DownloadError(PeerWireError):
    """The download as a whole cannot finish."""


class UnrecoverablePieceError(DownloadError):
    def __init__(self, index: int, attempts: int):
        super().__init__(f"Piece {index} gave up after {attempts} failed attempts")
        self.index = index
        self.attempts = attempts
