import argparse
import pytest
from main import build_parser, create_command, parse_peer
from peerwire.torrent.parser import parse_torrent_file


def test_parse_peer():
    assert parse_peer("127.0.0.1:6881") == ("127.0.0.1", 6881)
    for bad in ("localhost", ":6881", "host:port"):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_peer(bad)


def test_download_arguments():
    args = build_parser().parse_args(
        ["download", "a.torrent", "--peer", "10.0.0.1:1", "--peer", "10.0.0.2:2", "--timeout", "30"]
    )
    assert args.peer == [("10.0.0.1", 1), ("10.0.0.2", 2)]
    assert args.timeout == 30.0
    assert args.max_peer_failures == 1


def test_create_command_writes_loadable_torrent(tmp_path, capsys):
    source = tmp_path / "README.md"
    source.write_bytes(b"# notes\n" * 4000)
    output = tmp_path / "have" / "result.torrent"

    args = build_parser().parse_args(
        ["create", str(source), "-o", str(output), "--piece-length", str(12 * 1024)]
    )
    assert create_command(args) == 0

    metadata = parse_torrent_file(output)
    assert metadata.name == "README.md"
    assert metadata.num_pieces == 3
    assert metadata.info_hash.hex() in capsys.readouterr().out
