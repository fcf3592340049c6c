import random
import pytest
from peerwire.eventloop.server import PeerServer
from peerwire.peer.handshake import generate_peer_id
from peerwire.torrent.parser import create_torrent


@pytest.fixture
def make_content(tmp_path):
    """Write ``size`` pseudo-random bytes to disk and describe them as a torrent."""

    def _make(size: int, piece_length: int, name: str = "content.bin", seed: int = 0):
        data = random.Random(seed).randbytes(size)
        path = tmp_path / name
        path.write_bytes(data)
        return data, path, create_torrent(path, "", piece_length)

    return _make


@pytest.fixture
def corrupt_copy(tmp_path):
    """Copy of ``data`` with one byte flipped inside every piece."""

    def _corrupt(data: bytes, piece_length: int, name: str = "corrupt.bin"):
        damaged = bytearray(data)
        for offset in range(0, len(damaged), piece_length):
            damaged[offset] ^= 0xFF
        path = tmp_path / name
        path.write_bytes(bytes(damaged))
        return path

    return _corrupt


@pytest.fixture
async def start_server():
    servers = []

    async def _start(metadata, path, **kwargs):
        server = PeerServer(metadata, path, generate_peer_id(), **kwargs)
        await server.start("127.0.0.1", 0)
        servers.append(server)
        return server

    yield _start

    for server in servers:
        await server.close()
