from __future__ import annotations

import io
import struct
from dataclasses import dataclass, field
from datetime import datetime, timezone

from btcli.printer import ROW_SEPARATOR, RowPrinter, decode_value


@dataclass
class _Cell:
    value: bytes
    timestamp: datetime


@dataclass
class _Row:
    row_key: bytes
    cells: dict = field(default_factory=dict)


TS = datetime(2026, 1, 2, 3, 4, 5, 6, tzinfo=timezone.utc)


def test_decode_value_known_types():
    assert decode_value(b"hello", "string") == "hello"
    assert decode_value(struct.pack(">q", -42), "int") == "-42"
    assert decode_value(struct.pack(">d", 1.5), "float") == "1.5"


def test_decode_value_falls_back_to_quoted_bytes():
    assert decode_value(b"abc", "") == "'abc'"
    assert decode_value(b"\x01", "int") == "'\\x01'"


def test_print_row_uses_column_decode_over_global():
    row = _Row(
        row_key=b"r1",
        cells={
            "cf": {
                b"n": [_Cell(struct.pack(">q", 7), TS)],
                b"s": [_Cell(b"text", TS)],
            }
        },
    )
    out = io.StringIO()

    RowPrinter(decode="string", decode_columns={"n": "int"}, out=out).print_row(row)

    lines = out.getvalue().splitlines()
    assert lines[0] == ROW_SEPARATOR
    assert lines[1] == "r1"
    assert lines[2].startswith("  cf:n")
    assert lines[2].endswith("@ 2026/01/02-03:04:05.000006")
    assert lines[3] == "    7"
    assert lines[5] == "    text"


def test_print_rows_counts_rows():
    out = io.StringIO()
    rows = [_Row(row_key=b"a"), _Row(row_key=b"b")]

    assert RowPrinter(out=out).print_rows(rows) == 2
    assert out.getvalue().count(ROW_SEPARATOR) == 2
