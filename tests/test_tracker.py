import socket
import struct
import httpx
import pytest
from urllib.parse import parse_qs, urlsplit
from peerwire.common.errors import TrackerError
import bencodepy
from peerwire.tracker.tracker_client import TrackerClient

INFO_HASH = bytes(range(20))
PEER_ID = b"-PW0001-abcdefghijkl"


def make_tracker(handler, url="http://tracker.test/announce") -> TrackerClient:
    return TrackerClient(url, INFO_HASH, PEER_ID, 6881, 100_000, transport=httpx.MockTransport(handler))


async def test_started_parses_compact_peers():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(parse_qs(urlsplit(str(request.url)).query, encoding="latin-1"))
        compact = socket.inet_aton("10.0.0.1") + struct.pack(">H", 6881)
        compact += socket.inet_aton("10.0.0.2") + struct.pack(">H", 51413)
        return httpx.Response(200, content=bencodepy.encode({b"interval": 900, b"peers": compact}))

    tracker = make_tracker(handler)
    peers = await tracker.started()

    assert peers == [("10.0.0.1", 6881), ("10.0.0.2", 51413)]
    assert tracker.interval == 900
    assert seen["event"] == ["started"]
    assert seen["left"] == ["100000"]
    assert seen["info_hash"] == [INFO_HASH.decode("latin-1")]


async def test_dictionary_peer_list():
    def handler(request):
        peers = [{b"ip": b"192.168.1.5", b"port": 60609, b"peer id": b"x" * 20}]
        return httpx.Response(200, content=bencodepy.encode({b"interval": 60, b"peers": peers}))

    assert await make_tracker(handler).announce() == [("192.168.1.5", 60609)]


async def test_failure_reason_raises():
    def handler(request):
        return httpx.Response(200, content=bencodepy.encode({b"failure reason": b"unregistered torrent"}))

    with pytest.raises(TrackerError, match="unregistered torrent"):
        await make_tracker(handler).started()


async def test_undecodable_response_raises():
    def handler(request):
        return httpx.Response(200, content=b"<html>service unavailable</html>")

    with pytest.raises(TrackerError, match="undecodable"):
        await make_tracker(handler).started()


async def test_http_error_raises():
    with pytest.raises(TrackerError, match="request failed"):
        await make_tracker(lambda request: httpx.Response(503)).started()


async def test_udp_trackers_are_not_supported():
    with pytest.raises(TrackerError, match="Unsupported tracker protocol"):
        await make_tracker(lambda request: httpx.Response(200), "udp://tracker.test:80").started()
