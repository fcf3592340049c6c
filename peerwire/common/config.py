BLOCK_SIZE = 16384  # 16KB standard block size
MAX_BACKLOG = 5  # unfulfilled requests per piece attempt
CONNECT_TIMEOUT = 10
HANDSHAKE_TIMEOUT = 5
PIECE_TIMEOUT = 60
MAX_PIECE_RETRIES = 25
MAX_PEER_FAILURES = 1  # a single connection error ends a peer's participation
REQUEUE_DELAY = 0.01


class DownloadConfig:
    __slots__ = (
        "block_size",
        "max_backlog",
        "connect_timeout",
        "handshake_timeout",
        "piece_timeout",
        "max_piece_retries",
        "max_peer_failures",
        "download_timeout",
        "requeue_delay",
    )

    def __init__(
        self,
        *,
        block_size: int = BLOCK_SIZE,
        max_backlog: int = MAX_BACKLOG,
        connect_timeout: float = CONNECT_TIMEOUT,
        handshake_timeout: float = HANDSHAKE_TIMEOUT,
        piece_timeout: float = PIECE_TIMEOUT,
        max_piece_retries: int = MAX_PIECE_RETRIES,
        max_peer_failures: int = MAX_PEER_FAILURES,
        download_timeout: float | None = None,
        requeue_delay: float = REQUEUE_DELAY,
    ):
        if block_size <= 0 or max_backlog <= 0:
            raise ValueError("block_size and max_backlog must be positive")
        if max_piece_retries < 1 or max_peer_failures < 1:
            raise ValueError("retry budgets must be at least 1")

        self.block_size = block_size
        self.max_backlog = max_backlog
        self.connect_timeout = connect_timeout
        self.handshake_timeout = handshake_timeout
        self.piece_timeout = piece_timeout
        self.max_piece_retries = max_piece_retries
        self.max_peer_failures = max_peer_failures
        self.download_timeout = download_timeout
        self.requeue_delay = requeue_delay

    def __repr__(self):
        fields = ", ".join(f"{name}={getattr(self, name)!r}" for name in self.__slots__)
        return f"DownloadConfig({fields})"
