"""Tests for the streaming zip builder."""

import zipfile
from io import BytesIO

from compressor.archive import iter_zip


def _open(chunks) -> zipfile.ZipFile:
    return zipfile.ZipFile(BytesIO(b"".join(chunks)))


class TestIterZip:

    def test_empty_archive_is_valid(self):
        with _open(iter_zip([])) as zf:
            assert zf.namelist() == []
            assert zf.testzip() is None

    def test_entries_in_order(self):
        entries = [("b.webp", b"bbb"), ("a.webp", b"aaa"), ("c.png", b"c" * 1000)]

        with _open(iter_zip(entries)) as zf:
            assert zf.namelist() == ["b.webp", "a.webp", "c.png"]
            assert zf.read("c.png") == b"c" * 1000
            assert zf.getinfo("a.webp").compress_type == zipfile.ZIP_DEFLATED

    def test_streams_in_chunks(self):
        entries = [(f"{i}.bin", bytes(range(256)) * 40) for i in range(5)]

        chunks = list(iter_zip(entries, chunk_size=512))

        assert len(chunks) > 1
        assert all(len(c) <= 512 for c in chunks)
        with _open(chunks) as zf:
            assert len(zf.namelist()) == 5

    def test_same_entries_same_bytes(self):
        entries = [("a.webp", b"aaa"), ("b.webp", b"bbb")]

        first = _open(iter_zip(entries))
        second = _open(iter_zip(entries))

        assert [(i.filename, i.CRC) for i in first.infolist()] == [(i.filename, i.CRC) for i in second.infolist()]
