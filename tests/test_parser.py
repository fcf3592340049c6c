import hashlib
import pytest
import bencodepy
from peerwire.torrent.parser import create_torrent, parse_torrent_file, save_torrent_file


def test_create_torrent_hashes_each_piece(tmp_path):
    data = bytes(range(256)) * 100  # 25,600 bytes
    source = tmp_path / "notes.txt"
    source.write_bytes(data)

    metadata = create_torrent(source, "http://localhost:8090/announce", 12 * 1024)

    assert metadata.name == "notes.txt"
    assert metadata.total_length == len(data)
    assert metadata.num_pieces == 3
    for index, digest in enumerate(metadata.pieces):
        begin, end = metadata.piece_bounds(index)
        assert digest == hashlib.sha1(data[begin:end]).digest()


def test_saved_torrent_reloads_identically(tmp_path):
    source = tmp_path / "notes.txt"
    source.write_bytes(b"peer wire " * 5000)
    created = create_torrent(source, "http://localhost:8090/announce", 16384)

    torrent_path = tmp_path / "have" / "notes.torrent"
    save_torrent_file(created, torrent_path)
    loaded = parse_torrent_file(torrent_path)

    assert loaded.info_hash == created.info_hash
    assert loaded.pieces == created.pieces
    assert loaded.piece_length == created.piece_length
    assert loaded.total_length == created.total_length
    assert loaded.announce == "http://localhost:8090/announce"


def test_multi_file_torrents_are_rejected(tmp_path):
    info = {b"name": b"dir", b"piece length": 16384, b"pieces": b"", b"files": []}
    path = tmp_path / "multi.torrent"
    path.write_bytes(bencodepy.encode({b"info": info}))
    with pytest.raises(ValueError, match="Multi-file"):
        parse_torrent_file(path)


def test_saved_torrent_is_standard_bencode(tmp_path):
    source = tmp_path / "notes.txt"
    source.write_bytes(b"x" * 40000)
    created = create_torrent(source, "http://localhost:8090/announce", 16384)
    torrent_path = tmp_path / "notes.torrent"
    save_torrent_file(created, torrent_path)

    metainfo = bencodepy.decode(torrent_path.read_bytes())
    info = metainfo[b"info"]
    assert metainfo[b"announce"] == b"http://localhost:8090/announce"
    assert info[b"name"] == b"notes.txt"
    assert info[b"length"] == 40000
    assert info[b"piece length"] == 16384
    assert len(info[b"pieces"]) == 3 * 20
    assert hashlib.sha1(bencodepy.encode(info)).digest() == created.info_hash
