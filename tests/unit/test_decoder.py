"""
Unit tests for the NDJSON and CSV/TSV stream decoders.
"""

import io
import sys

import pytest

from jobfeed.ingest.decoder import ChunkStream, excerpt, iter_ndjson, iter_tabular
from jobfeed.ingest.records import NO_VALUE


def chunked(data: bytes, size: int):
    """Split bytes into fixed-size chunks, as a network stream would."""
    return [data[i:i + size] for i in range(0, len(data), size)]


class TestNdjsonDecoder:
    """Tests for iter_ndjson."""

    def test_decodes_objects_in_order(self):
        """Each line becomes one record with its line number."""
        data = b'{"a": 1}\n{"a": 2}\n'
        records = list(iter_ndjson(io.BytesIO(data)))

        assert [r.position for r in records] == [1, 2]
        assert [r.fields for r in records] == [{"a": 1}, {"a": 2}]
        assert all(r.ok for r in records)

    def test_blank_lines_skipped_but_counted(self):
        """Blank lines advance the position without yielding a record."""
        data = b'{"a": 1}\n\n   \n{"a": 2}\n'
        records = list(iter_ndjson(io.BytesIO(data)))

        assert [r.position for r in records] == [1, 4]

    def test_crlf_and_missing_trailing_newline(self):
        """CRLF line endings and an unterminated last line decode."""
        data = b'{"a": 1}\r\n{"a": 2}'
        records = list(iter_ndjson(io.BytesIO(data)))

        assert [r.fields for r in records] == [{"a": 1}, {"a": 2}]

    def test_invalid_json_reported_and_stream_continues(self):
        """A malformed line becomes a decode error; later lines still decode."""
        data = b'{"a": 1}\n{not json}\n{"a": 3}\n'
        records = list(iter_ndjson(io.BytesIO(data)))

        assert len(records) == 3
        bad = records[1]
        assert not bad.ok
        assert bad.position == 2
        assert bad.error.startswith("invalid JSON")
        assert bad.excerpt == "{not json}"
        assert records[2].fields == {"a": 3}

    def test_non_object_line_is_decode_error(self):
        """Arrays and scalars are not records."""
        records = list(iter_ndjson(io.BytesIO(b'[1, 2]\n42\n')))

        assert [r.ok for r in records] == [False, False]
        assert "list" in records[0].error
        assert "int" in records[1].error

    def test_utf8_bom_stripped(self):
        """A leading byte-order mark does not corrupt the first record."""
        data = b'\xef\xbb\xbf{"title": "Caf\xc3\xa9"}\n'
        records = list(iter_ndjson(io.BytesIO(data)))

        assert records[0].fields == {"title": "Café"}

    def test_multibyte_character_split_across_chunks(self):
        """Chunk boundaries inside a UTF-8 sequence decode correctly."""
        data = '{"city": "Zürich"}\n{"city": "Kraków"}\n'.encode("utf-8")
        records = list(iter_ndjson(chunked(data, 3)))

        assert [r.fields["city"] for r in records] == ["Zürich", "Kraków"]

    def test_lazy_consumption(self):
        """Only the chunks needed for the first record are pulled."""
        pulled = []

        def source():
            for chunk in [b'{"a": 1}\n', b'{"a": 2}\n', b'{"a": 3}\n']:
                pulled.append(chunk)
                yield chunk

        records = iter_ndjson(source())
        first = next(records)

        assert first.fields == {"a": 1}
        assert len(pulled) < 3

    @pytest.mark.skipif(
        not hasattr(sys, "get_int_max_str_digits"), reason="no integer digit limit")
    def test_oversized_integer_is_decode_error(self):
        """An integer literal past the interpreter's digit limit is one bad line."""
        big = b'{"company_slug": "acme", "n": ' + b"1" * 5000 + b"}"
        data = b'{"a": 1}\n' + big + b'\n{"a": 3}\n'
        records = list(iter_ndjson(io.BytesIO(data)))

        assert len(records) == 3
        assert not records[1].ok
        assert records[1].position == 2
        assert records[1].error.startswith("invalid JSON")
        assert len(records[1].excerpt) == 80
        assert records[2].fields == {"a": 3}

    def test_deeply_nested_line_is_decode_error(self):
        """Nesting too deep for the parser does not end the stream."""
        data = b'{"a": 1}\n' + b"[" * 100000 + b'\n{"a": 3}\n'
        records = list(iter_ndjson(io.BytesIO(data)))

        assert [r.ok for r in records] == [True, False, True]
        assert records[1].position == 2
        assert records[2].fields == {"a": 3}

    def test_empty_stream(self):
        """An empty feed yields nothing."""
        assert list(iter_ndjson(io.BytesIO(b""))) == []


class TestTabularDecoder:
    """Tests for iter_tabular."""

    def test_header_defines_fields(self):
        """Rows are keyed by the header; positions count the header as row 1."""
        data = b"company_slug,internal_job_id,title\nacme,1,Engineer\nacme,2,Designer\n"
        records = list(iter_tabular(io.BytesIO(data)))

        assert [r.position for r in records] == [2, 3]
        assert records[0].fields == {
            "company_slug": "acme", "internal_job_id": "1", "title": "Engineer"}

    def test_quoted_fields(self):
        """Quoted delimiters, escaped quotes and embedded newlines survive."""
        data = (
            b'id,title,notes\n'
            b'1,"Engineer, Senior","He said ""hi"""\n'
            b'2,Designer,"line one\nline two"\n'
        )
        records = list(iter_tabular(io.BytesIO(data)))

        assert records[0].fields["title"] == "Engineer, Senior"
        assert records[0].fields["notes"] == 'He said "hi"'
        assert records[1].fields["notes"] == "line one\nline two"

    def test_cells_trimmed_and_empty_cells_marked(self):
        """Whitespace is trimmed and empty cells become NO_VALUE."""
        data = b"id, title ,city\n 1 ,  , Berlin \n"
        fields = list(iter_tabular(io.BytesIO(data)))[0].fields

        assert fields == {"id": "1", "title": NO_VALUE, "city": "Berlin"}

    def test_short_rows_padded_long_rows_truncated(self):
        """Row width always matches the header."""
        data = b"a,b,c\n1\n1,2,3,4,5\n"
        records = list(iter_tabular(io.BytesIO(data)))

        assert records[0].fields == {"a": "1", "b": NO_VALUE, "c": NO_VALUE}
        assert records[1].fields == {"a": "1", "b": "2", "c": "3"}

    def test_blank_rows_skipped(self):
        """Blank rows before the header and between records are skipped."""
        data = b"\n\nid,title\n1,A\n\n2,B\n"
        records = list(iter_tabular(io.BytesIO(data)))

        assert [r.fields["id"] for r in records] == ["1", "2"]
        assert [r.position for r in records] == [4, 6]

    def test_tab_delimiter(self):
        """TSV feeds use the same decoder with a tab delimiter."""
        data = b"id\ttitle\n1\tEngineer, Senior\n"
        records = list(iter_tabular(io.BytesIO(data), delimiter="\t"))

        assert records[0].fields == {"id": "1", "title": "Engineer, Senior"}

    def test_crlf_rows_across_chunks(self):
        """CRLF rows split at arbitrary chunk boundaries decode."""
        data = b"id,title\r\n1,Engineer\r\n2,Designer\r\n"
        records = list(iter_tabular(chunked(data, 4)))

        assert [r.fields["title"] for r in records] == ["Engineer", "Designer"]

    def test_bom_stripped_from_header(self):
        """The first header name is not polluted by a BOM."""
        data = b"\xef\xbb\xbfid,title\n1,A\n"
        records = list(iter_tabular(io.BytesIO(data)))

        assert "id" in records[0].fields

    def test_header_only(self):
        """A feed with only a header yields no records."""
        assert list(iter_tabular(io.BytesIO(b"id,title\n"))) == []


class TestHelpers:
    """Tests for decoder helpers."""

    def test_chunk_stream_reads_across_chunks(self):
        """ChunkStream concatenates chunks and skips empty ones."""
        stream = io.BufferedReader(ChunkStream([b"ab", b"", b"cde"]))

        assert stream.read() == b"abcde"

    def test_excerpt_truncates(self):
        """Long lines are cut to the excerpt length."""
        text = excerpt("x" * 200)

        assert len(text) == 80
        assert text.endswith("...")
