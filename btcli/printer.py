from __future__ import annotations

import struct
import sys
from datetime import datetime
from typing import Any, Iterable, Mapping, TextIO

ROW_SEPARATOR = "-" * 40


def decode_value(raw: bytes, kind: str) -> str:
    if kind == "string":
        return raw.decode("utf-8", errors="replace")
    if kind == "int" and len(raw) == 8:
        return str(struct.unpack(">q", raw)[0])
    if kind == "float" and len(raw) == 8:
        return repr(struct.unpack(">d", raw)[0])
    return repr(raw)[1:]


def _format_timestamp(ts: datetime | None) -> str:
    if ts is None:
        return ""
    return ts.strftime("%Y/%m/%d-%H:%M:%S.%f")


def _text(raw: Any) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return str(raw)


class RowPrinter:
    def __init__(
        self,
        *,
        decode: str = "",
        decode_columns: Mapping[str, str] | None = None,
        out: TextIO | None = None,
    ) -> None:
        self.decode = decode
        self.decode_columns = dict(decode_columns or {})
        self.out = out or sys.stdout

    def _kind_for(self, qualifier: str) -> str:
        return self.decode_columns.get(qualifier) or self.decode

    def print_row(self, row: Any) -> None:
        w = self.out.write
        w(ROW_SEPARATOR + "\n")
        w(_text(row.row_key) + "\n")
        for family in sorted(row.cells):
            columns = row.cells[family]
            for qualifier in sorted(columns):
                name = _text(qualifier)
                for cell in columns[qualifier]:
                    label = f"{family}:{name}"
                    w(f"  {label:<40} @ {_format_timestamp(cell.timestamp)}\n")
                    w(f"    {decode_value(cell.value, self._kind_for(name))}\n")

    def print_rows(self, rows: Iterable[Any]) -> int:
        n = 0
        for row in rows:
            self.print_row(row)
            n += 1
        return n
