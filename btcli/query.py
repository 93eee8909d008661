"""Compile ``key=value`` command options into Bigtable read requests.

The compiled request is backend-neutral: a RowRangeSpec, an ordered
FilterChain and an optional row limit. ``bigtable_client`` turns these into
``google-cloud-bigtable`` objects.

Filters are always applied in FILTER_ORDER, whatever order the options were
given on the command line; the row limit caps returned rows and sits beside
the chain rather than inside it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence, Union

from .cli_shared import BTCLI_DECODE_TYPE, ValidationError, _env_or_none
from .options import QueryOptions, parse_options


@dataclass(frozen=True)
class RowRangeSpec:
    kind: str
    start: str = ""
    end: str = ""
    prefix: str = ""

    @classmethod
    def unbounded(cls) -> "RowRangeSpec":
        return cls(kind="unbounded")

    @classmethod
    def closed_open(cls, start: str, end: str) -> "RowRangeSpec":
        return cls(kind="range", start=start, end=end)

    @classmethod
    def infinite(cls, start: str) -> "RowRangeSpec":
        return cls(kind="infinite", start=start)

    @classmethod
    def with_prefix(cls, prefix: str) -> "RowRangeSpec":
        return cls(kind="prefix", prefix=prefix)


@dataclass(frozen=True)
class RowKeyRegex:
    pattern: str


@dataclass(frozen=True)
class FamilyEquals:
    family: str

    @property
    def pattern(self) -> str:
        return f"^{self.family}$"


@dataclass(frozen=True)
class LatestVersions:
    n: int


@dataclass(frozen=True)
class TimestampRange:
    start: int | None = None
    end: int | None = None


@dataclass(frozen=True)
class ValueEquals:
    value: str


RowFilterSpec = Union[RowKeyRegex, FamilyEquals, LatestVersions, TimestampRange, ValueEquals]

FILTER_ORDER = (RowKeyRegex, FamilyEquals, LatestVersions, TimestampRange, ValueEquals)


@dataclass(frozen=True)
class FilterChain:
    filters: tuple[RowFilterSpec, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.filters)

    def single(self) -> RowFilterSpec | None:
        if len(self.filters) == 1:
            return self.filters[0]
        return None


@dataclass(frozen=True)
class ReadRequest:
    table: str
    row_range: RowRangeSpec
    filter_chain: FilterChain
    limit: int | None = None
    decode: str = ""
    decode_columns: str = ""


@dataclass(frozen=True)
class LookupRequest:
    table: str
    row_key: str
    filter_chain: FilterChain
    decode: str = ""
    decode_columns: str = ""


def build_row_range(opts: QueryOptions) -> RowRangeSpec:
    if (opts.start or opts.end) and opts.prefix:
        raise ValidationError('"start"/"end" may not be mixed with "prefix"')
    if opts.prefix:
        return RowRangeSpec.with_prefix(opts.prefix)
    if opts.end:
        return RowRangeSpec.closed_open(opts.start, opts.end)
    if opts.start:
        return RowRangeSpec.infinite(opts.start)
    return RowRangeSpec.unbounded()


def _filter_candidates(opts: QueryOptions) -> dict[type, RowFilterSpec]:
    found: dict[type, RowFilterSpec] = {}
    if opts.regex:
        found[RowKeyRegex] = RowKeyRegex(opts.regex)
    if opts.family:
        found[FamilyEquals] = FamilyEquals(opts.family)
    if opts.version is not None:
        found[LatestVersions] = LatestVersions(opts.version)
    if opts.from_ts is not None or opts.to_ts is not None:
        found[TimestampRange] = TimestampRange(start=opts.from_ts, end=opts.to_ts)
    if opts.value:
        found[ValueEquals] = ValueEquals(opts.value)
    return found


def build_filter_chain(opts: QueryOptions) -> tuple[FilterChain, int | None]:
    found = _filter_candidates(opts)
    chain = FilterChain(tuple(found[kind] for kind in FILTER_ORDER if kind in found))
    return chain, opts.count


def compile_read(table: str, raw_args: Sequence[str]) -> ReadRequest:
    opts = QueryOptions.from_parsed(parse_options("read", raw_args))
    row_range = build_row_range(opts)
    chain, limit = build_filter_chain(opts)
    return ReadRequest(
        table=table,
        row_range=row_range,
        filter_chain=chain,
        limit=limit,
        decode=opts.decode,
        decode_columns=opts.decode_columns,
    )


def compile_lookup(table: str, row_key: str, raw_args: Sequence[str]) -> LookupRequest:
    opts = QueryOptions.from_parsed(parse_options("lookup", raw_args))
    chain, _ = build_filter_chain(opts)
    return LookupRequest(
        table=table,
        row_key=row_key,
        filter_chain=chain,
        decode=opts.decode,
        decode_columns=opts.decode_columns,
    )


def decode_type(explicit: str, *, env_or_none: Callable[..., str | None] = _env_or_none) -> str:
    if explicit:
        return explicit
    return env_or_none(BTCLI_DECODE_TYPE) or ""


def decode_columns(raw: str) -> dict[str, str]:
    out: dict[str, str] = {}
    if not raw:
        return out
    for pair in raw.split(","):
        column, sep, kind = pair.partition(":")
        if not sep:
            continue
        out[column] = kind
    return out
