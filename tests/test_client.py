import asyncio
import pytest
from peerwire.common.config import DownloadConfig
from peerwire.common.errors import DownloadError, UnrecoverablePieceError
from peerwire.eventloop.client import TorrentClient
from peerwire.peer.bitfield import Bitfield
from peerwire.peer.handshake import exchange_handshake, generate_peer_id
from peerwire.peer.messages import (
    BitfieldMessage,
    Have,
    Interested,
    Piece,
    Request,
    Unchoke,
    read_message,
)


def fast_config(**overrides) -> DownloadConfig:
    settings = {"piece_timeout": 5, "handshake_timeout": 2, "download_timeout": 20}
    settings.update(overrides)
    return DownloadConfig(**settings)


async def test_three_peers_with_split_pieces(make_content, start_server):
    data, path, metadata = make_content(100_000, 16_384)
    assert metadata.num_pieces == 7

    servers = [
        await start_server(metadata, path, have=[0, 1, 2]),
        await start_server(metadata, path, have=[0, 3, 4]),
        await start_server(metadata, path, have=[0, 5, 6]),
    ]
    metadata.peers = [("127.0.0.1", server.port) for server in servers]

    delivered = []
    client = TorrentClient(
        metadata,
        generate_peer_id(),
        fast_config(),
        on_piece=lambda index, percent: delivered.append((index, percent)),
    )
    result = await client.download()

    assert result == data
    assert sorted(index for index, _ in delivered) == list(range(7))
    assert delivered[-1][1] == pytest.approx(100.0)
    assert client.stats["pieces_completed"] == 7
    assert client.workers == []


async def test_corrupt_peers_never_reach_the_output(make_content, corrupt_copy, start_server):
    data, path, metadata = make_content(40_000, 16_384)
    bad_path = corrupt_copy(data, 16_384)

    servers = [
        await start_server(metadata, bad_path),
        await start_server(metadata, bad_path),
        await start_server(metadata, path),
    ]
    metadata.peers = [("127.0.0.1", server.port) for server in servers]

    delivered = []
    client = TorrentClient(
        metadata,
        generate_peer_id(),
        fast_config(),
        on_piece=lambda index, percent: delivered.append(index),
    )

    assert await client.download() == data
    assert sorted(delivered) == [0, 1, 2]


async def test_honest_peer_gets_the_piece_a_corrupt_peer_failed(make_content, corrupt_copy, start_server):
    data, path, metadata = make_content(10_000, 16_384)
    bad = await start_server(metadata, corrupt_copy(data, 16_384))
    good = await start_server(metadata, path)
    metadata.peers = [("127.0.0.1", bad.port), ("127.0.0.1", good.port)]

    client = TorrentClient(metadata, generate_peer_id(), DownloadConfig(download_timeout=20))

    assert await client.download() == data
    assert client.stats["integrity_failures"] <= 1
    assert client.retries[0] <= 1


async def test_piece_every_peer_corrupts_is_unrecoverable(make_content, corrupt_copy, start_server):
    data, _, metadata = make_content(10_000, 16_384)
    bad_path = corrupt_copy(data, 16_384)
    servers = [await start_server(metadata, bad_path), await start_server(metadata, bad_path)]
    metadata.peers = [("127.0.0.1", server.port) for server in servers]

    client = TorrentClient(metadata, generate_peer_id(), fast_config())

    with pytest.raises(UnrecoverablePieceError) as info:
        await client.download()
    assert info.value.index == 0
    assert info.value.attempts == 2
    assert client.stats["integrity_failures"] == 2


async def test_piece_retry_budget_is_enforced(make_content, corrupt_copy, start_server):
    data, _, metadata = make_content(10_000, 16_384)
    bad_path = corrupt_copy(data, 16_384)
    servers = [await start_server(metadata, bad_path) for _ in range(3)]
    metadata.peers = [("127.0.0.1", server.port) for server in servers]

    client = TorrentClient(metadata, generate_peer_id(), fast_config(max_piece_retries=2))

    with pytest.raises(UnrecoverablePieceError) as info:
        await client.download()
    assert info.value.attempts == 2
    assert client.stats["integrity_failures"] == 2


async def test_have_during_a_download_makes_a_piece_available(make_content):
    data, _, metadata = make_content(30_000, 16_384)
    assert metadata.num_pieces == 2
    requested = []

    async def seeder(reader, writer):
        # starts out with piece 0 only and announces piece 1 mid-transfer
        try:
            await exchange_handshake(
                reader, writer, metadata.info_hash, generate_peer_id(), initiator=False
            )
            writer.write(BitfieldMessage(Bitfield.from_indices(2, [0]).to_bytes()).encode())
            await writer.drain()
            while True:
                message = await read_message(reader)
                if isinstance(message, Interested):
                    writer.write(Unchoke().encode())
                elif isinstance(message, Request):
                    requested.append(message.index)
                    if message.index == 0:
                        writer.write(Have(1).encode())
                    start = metadata.piece_bounds(message.index)[0] + message.begin
                    block = data[start : start + message.length]
                    writer.write(Piece(message.index, message.begin, block).encode())
                await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            writer.close()

    server = await asyncio.start_server(seeder, "127.0.0.1", 0)
    metadata.peers = [("127.0.0.1", server.sockets[0].getsockname()[1])]
    try:
        client = TorrentClient(metadata, generate_peer_id(), fast_config())
        assert await client.download() == data
    finally:
        server.close()
        await server.wait_closed()

    assert requested == [0, 1]


async def test_peer_without_pieces_does_not_block_completion(make_content, start_server):
    data, path, metadata = make_content(60_000, 16_384)
    empty = await start_server(metadata, path, have=[])
    full = await start_server(metadata, path)
    metadata.peers = [("127.0.0.1", empty.port), ("127.0.0.1", full.port)]

    client = TorrentClient(metadata, generate_peer_id(), fast_config())

    assert await client.download() == data
    assert client.retries == {}


async def test_unobtainable_piece_hits_download_deadline(make_content, start_server):
    _, path, metadata = make_content(60_000, 16_384)
    partial = await start_server(metadata, path, have=[0, 1, 2])
    metadata.peers = [("127.0.0.1", partial.port)]

    client = TorrentClient(metadata, generate_peer_id(), fast_config(download_timeout=0.5))

    with pytest.raises(TimeoutError):
        await client.download()
    assert client.workers == []


async def test_all_peers_gone_is_a_download_error(make_content):
    _, _, metadata = make_content(20_000, 16_384)

    # grab a port nobody is listening on
    placeholder = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
    port = placeholder.sockets[0].getsockname()[1]
    placeholder.close()
    await placeholder.wait_closed()

    metadata.peers = [("127.0.0.1", port), ("127.0.0.1", port)]
    client = TorrentClient(metadata, generate_peer_id(), fast_config(max_peer_failures=2))

    with pytest.raises(DownloadError, match="All peers are gone with 2 pieces outstanding"):
        await client.download()
    assert client.stats["peers_dropped"] == 2


async def test_no_peers_fails_before_starting(make_content):
    _, _, metadata = make_content(20_000, 16_384)
    client = TorrentClient(metadata, generate_peer_id())

    with pytest.raises(DownloadError, match="No peers"):
        await client.download()


async def test_download_to_file(make_content, start_server, tmp_path):
    data, path, metadata = make_content(30_000, 8_192)
    server = await start_server(metadata, path)
    metadata.peers = [("127.0.0.1", server.port)]

    client = TorrentClient(metadata, generate_peer_id(), fast_config())
    saved = await client.download_to_file(tmp_path / "downloads")

    assert saved == tmp_path / "downloads" / "content.bin"
    assert saved.read_bytes() == data
