import httpx
from urllib.parse import urlencode
import socket
import struct
import bencodepy
import logging
from typing import Optional
from peerwire.common.errors import TrackerError

logger = logging.getLogger(__name__)


class TrackerClient:
    __slots__ = (
        "announce_url",
        "info_hash",
        "peer_id",
        "port",
        "total_length",
        "uploaded",
        "downloaded",
        "left",
        "interval",
        "complete",
        "incomplete",
        "transport",
    )

    def __init__(
        self,
        announce_url: str,
        info_hash: bytes,
        peer_id: bytes,
        port: int,
        total_length: int,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.announce_url = announce_url
        self.info_hash = info_hash
        self.peer_id = peer_id
        self.port = port
        self.total_length = total_length
        self.uploaded = 0
        self.downloaded = 0
        self.left = total_length
        self.interval = None
        self.complete = None
        self.incomplete = None
        self.transport = transport

    def _build_query(self, event: Optional[str] = None) -> str:
        params = {
            "info_hash": self.info_hash,  # bytes; urlencode percent-encodes
            "peer_id": self.peer_id,
            "port": self.port,
            "uploaded": self.uploaded,
            "downloaded": self.downloaded,
            "left": self.left,
            "compact": 1,
        }
        if event:
            params["event"] = event
        return urlencode(params)

    async def announce(self, event: Optional[str] = None) -> list[tuple[str, int]]:
        scheme = self.announce_url.split(":", 1)[0]
        if scheme not in {"http", "https"}:
            raise TrackerError(f"Unsupported tracker protocol: {scheme}")

        url = f"{self.announce_url}?{self._build_query(event)}"
        logger.info(f"Announcing to tracker {self.announce_url} (event={event})")
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self.transport) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise TrackerError(f"Tracker request failed: {e}") from e

        try:
            decoded = bencodepy.decode(response.content)
        except Exception as e:
            raise TrackerError(f"Tracker sent an undecodable response: {e}") from e

        if b"failure reason" in decoded:
            raise TrackerError(f"Tracker failure: {decoded[b'failure reason'].decode()}")

        self.interval = decoded.get(b"interval")
        self.complete = decoded.get(b"complete")
        self.incomplete = decoded.get(b"incomplete")

        peers = self._parse_peers(decoded.get(b"peers", b""))
        logger.info(f"Tracker returned {len(peers)} peers")
        return peers

    @staticmethod
    def _parse_peers(peers_raw) -> list[tuple[str, int]]:
        peers = []
        if isinstance(peers_raw, bytes):
            if len(peers_raw) % 6:
                raise TrackerError(f"Compact peer list length {len(peers_raw)} is not a multiple of 6")
            for i in range(0, len(peers_raw), 6):
                ip = socket.inet_ntoa(peers_raw[i : i + 4])
                (peer_port,) = struct.unpack(">H", peers_raw[i + 4 : i + 6])
                peers.append((ip, peer_port))
        else:
            for peer in peers_raw:
                peers.append((peer[b"ip"].decode(), peer[b"port"]))
        return peers

    async def started(self) -> list[tuple[str, int]]:
        return await self.announce(event="started")

    async def completed(self) -> list[tuple[str, int]]:
        self.left = 0
        self.downloaded = self.total_length
        return await self.announce(event="completed")

    async def stopped(self) -> list[tuple[str, int]]:
        return await self.announce(event="stopped")
