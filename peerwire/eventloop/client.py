from peerwire.common.config import DownloadConfig
from peerwire.common.errors import (
    DownloadError,
    HandshakeError,
    IntegrityError,
    MalformedMessageError,
    UnrecoverablePieceError,
)
from peerwire.peer.connected_peer import Peer
from peerwire.peer.piece_download import PieceResult, PieceWork, attempt_download_piece
from peerwire.torrent.metadata import TorrentMetadata
from peerwire.torrent.verify import check_integrity
from collections import Counter, defaultdict
from pathlib import Path
from typing import Callable
import asyncio
import logging

logger = logging.getLogger(__name__)

# anything that means "this connection is no good any more"
CONNECTION_ERRORS = (
    OSError,
    TimeoutError,
    asyncio.IncompleteReadError,
    HandshakeError,
    MalformedMessageError,
)


class TorrentClient:
    """Downloads a whole torrent into memory, one worker task per known peer.

    The work queue and the result queue are the only state the workers
    share. Each result is copied into the output buffer by the collection
    loop in ``download``; workers never touch it.
    """

    __slots__ = (
        "metadata",
        "peer_id",
        "config",
        "on_piece",
        "work_queue",
        "results",
        "workers",
        "retries",
        "rejected",
        "stats",
        "_live_workers",
        "_shutdown",
    )

    def __init__(
        self,
        metadata: TorrentMetadata,
        peer_id: bytes,
        config: DownloadConfig | None = None,
        on_piece: Callable[[int, float], None] | None = None,
    ):
        self.metadata = metadata
        self.peer_id = peer_id
        self.config = config or DownloadConfig()
        self.on_piece = on_piece

        # Queues
        self.work_queue: asyncio.Queue[PieceWork] = None
        self.results: asyncio.Queue[PieceResult | Exception] = None

        # Workers
        self.workers: list[asyncio.Task] = []
        self._live_workers: set[int] = set()
        self._shutdown = False

        # Failed attempts per piece index
        self.retries: Counter[int] = Counter()

        # Workers whose copy of a piece failed verification, per piece index
        self.rejected: defaultdict[int, set[int]] = defaultdict(set)

        # Stats
        self.stats = {
            "pieces_completed": 0,
            "integrity_failures": 0,
            "requeued": 0,
            "peers_dropped": 0,
        }

        logger.info(f"Initialized TorrentClient for {metadata.name}")

    async def download(self) -> bytes:
        logger.info(f"Starting download for {self.metadata.name}")
        if self.metadata.num_pieces == 0:
            return b""
        if not self.metadata.peers:
            raise DownloadError(f"No peers to download {self.metadata.name} from")

        self._shutdown = False
        self.work_queue = asyncio.Queue()
        self.results = asyncio.Queue()
        for index, digest in enumerate(self.metadata.pieces):
            self.work_queue.put_nowait(
                PieceWork(index, digest, self.metadata.piece_size(index))
            )

        self.rejected.clear()
        self._live_workers = set(range(len(self.metadata.peers)))
        self.workers = [
            asyncio.create_task(
                self._download_worker(worker_id, host, port), name=f"peer-{host}:{port}"
            )
            for worker_id, (host, port) in enumerate(self.metadata.peers)
        ]

        try:
            async with asyncio.timeout(self.config.download_timeout):
                return await self._collect_results()
        except TimeoutError:
            logger.error(
                f"Download of {self.metadata.name} timed out after {self.config.download_timeout}s"
            )
            raise
        except DownloadError as e:
            logger.error(f"Download of {self.metadata.name} failed: {e}")
            raise
        finally:
            await self.cleanup()

    async def download_to_file(self, directory: Path) -> Path:
        data = await self.download()
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / self.metadata.name
        with open(path, "wb") as f:
            f.write(data)
        logger.info(f"Saved {len(data)} bytes to {path}")
        return path

    async def _collect_results(self) -> bytes:
        num_pieces = self.metadata.num_pieces
        buf = bytearray(self.metadata.total_length)
        done_pieces = 0

        while done_pieces < num_pieces:
            result = await self.results.get()
            if isinstance(result, Exception):
                raise result

            begin, end = self.metadata.piece_bounds(result.index)
            buf[begin:end] = result.buf
            done_pieces += 1
            self.stats["pieces_completed"] = done_pieces

            percent = done_pieces / num_pieces * 100
            logger.info(
                f"({percent:0.2f}%) Downloaded piece #{result.index} from {len(self._live_workers)} peers"
            )
            if self.on_piece is not None:
                self.on_piece(result.index, percent)

        return bytes(buf)

    async def _download_worker(self, worker_id: int, host: str, port: int):
        failures = 0
        try:
            while not self._shutdown and failures < self.config.max_peer_failures:
                peer = Peer(
                    host,
                    port,
                    self.metadata.info_hash,
                    self.peer_id,
                    self.metadata.num_pieces,
                    self.config,
                )
                try:
                    await peer.connect()
                    await peer.send_unchoke()
                    await peer.send_interested()

                    while not self._shutdown:
                        work = await self.work_queue.get()
                        if (
                            worker_id in self.rejected.get(work.index, ())
                            or not peer.bitfield.has_piece(work.index)
                        ):
                            # put it back and let someone else have a go
                            self.work_queue.put_nowait(work)
                            await asyncio.sleep(self.config.requeue_delay)
                            continue

                        if await self._attempt_piece(worker_id, peer, work):
                            failures = 0
                        else:
                            await asyncio.sleep(self.config.requeue_delay)

                except CONNECTION_ERRORS as e:
                    failures += 1
                    logger.warning(
                        f"Connection to peer {host}:{port} failed ({failures}/{self.config.max_peer_failures}): {e!r}"
                    )
                finally:
                    await peer.close()

            if failures >= self.config.max_peer_failures:
                self.stats["peers_dropped"] += 1
                logger.info(f"Peer {host}:{port} evicted after {failures} consecutive failures")
        finally:
            self._live_workers.discard(worker_id)
            if not self._shutdown:
                if not self._live_workers:
                    self.results.put_nowait(
                        DownloadError(
                            f"All peers are gone with {self.metadata.num_pieces - self.stats['pieces_completed']} pieces outstanding"
                        )
                    )
                else:
                    self._fail_stranded_pieces()

    async def _attempt_piece(self, worker_id: int, peer: Peer, work: PieceWork) -> bool:
        try:
            buf = await attempt_download_piece(peer, work, self.config)
        except CONNECTION_ERRORS:
            self._requeue(work)
            raise

        try:
            check_integrity(work.index, work.digest, buf)
        except IntegrityError as e:
            self.stats["integrity_failures"] += 1
            logger.warning(f"{e} (from {peer.host}:{peer.port})")
            self.rejected[work.index].add(worker_id)
            self._requeue(work)
            return False

        self.rejected.pop(work.index, None)
        try:
            await peer.send_have(work.index)
        finally:
            self.results.put_nowait(PieceResult(work.index, buf))
        return True

    def _requeue(self, work: PieceWork):
        self.retries[work.index] += 1
        attempts = self.retries[work.index]
        if attempts >= self.config.max_piece_retries:
            self.results.put_nowait(UnrecoverablePieceError(work.index, attempts))
            return
        if self._live_workers <= self.rejected.get(work.index, set()):
            logger.error(f"Every remaining peer sent a bad copy of piece {work.index}")
            self.results.put_nowait(UnrecoverablePieceError(work.index, attempts))
            return
        self.stats["requeued"] += 1
        self.work_queue.put_nowait(work)

    def _fail_stranded_pieces(self):
        # a departed peer may leave pieces that only it had not yet rejected
        for index, rejected_by in self.rejected.items():
            if self._live_workers <= rejected_by:
                self.results.put_nowait(UnrecoverablePieceError(index, self.retries[index]))

    async def cleanup(self):
        self._shutdown = True

        for worker in self.workers:
            worker.cancel()
        await asyncio.gather(*self.workers, return_exceptions=True)
        self.workers = []

        logger.info("Cleanup complete")
