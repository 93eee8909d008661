"""Thin adapter over ``google-cloud-bigtable``.

Translates compiled requests into SDK row sets and row filters, builds the
authenticated client from a ResolvedConfig, and wraps SDK failures in
BackendError without retrying.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator

import google.auth
import google.oauth2.credentials
from google.api_core import exceptions as api_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import bigtable
from google.cloud.bigtable import row_filters
from google.cloud.bigtable.row_set import RowRange, RowSet

from .cli_shared import BackendError, _require_str
from .config import INSTANCE_HINT, ResolvedConfig
from .query import (
    FamilyEquals,
    FilterChain,
    LatestVersions,
    LookupRequest,
    ReadRequest,
    RowFilterSpec,
    RowKeyRegex,
    RowRangeSpec,
    TimestampRange,
    ValueEquals,
)
from .tokens import TokenSource

BIGTABLE_SCOPES = (
    "https://www.googleapis.com/auth/bigtable.admin",
    "https://www.googleapis.com/auth/bigtable.data",
    "https://www.googleapis.com/auth/cloud-platform",
)

# google-auth refreshes tokens this long before they expire.
GOOGLE_AUTH_REFRESH_MARGIN = timedelta(minutes=5)

_BACKEND_ERRORS = (api_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError)


def _key_bytes(key: str) -> bytes:
    return key.encode("utf-8")


def prefix_successor(prefix: bytes) -> bytes:
    """Return the smallest key greater than every key starting with prefix.

    An empty result means there is no upper bound.
    """
    trimmed = prefix.rstrip(b"\xff")
    if not trimmed:
        return b""
    return trimmed[:-1] + bytes([trimmed[-1] + 1])


def to_row_set(spec: RowRangeSpec) -> RowSet | None:
    if spec.kind == "unbounded":
        return None
    if spec.kind == "range":
        row_range = RowRange(
            start_key=_key_bytes(spec.start) if spec.start else None,
            end_key=_key_bytes(spec.end),
        )
    elif spec.kind == "infinite":
        row_range = RowRange(start_key=_key_bytes(spec.start))
    elif spec.kind == "prefix":
        start = _key_bytes(spec.prefix)
        end = prefix_successor(start)
        row_range = RowRange(start_key=start, end_key=end or None)
    else:
        raise ValueError(f"unknown row range kind: {spec.kind}")
    row_set = RowSet()
    row_set.add_row_range(row_range)
    return row_set


def _unix(seconds: int | None) -> datetime | None:
    if seconds is None:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def to_sdk_filter(spec: RowFilterSpec) -> row_filters.RowFilter:
    if isinstance(spec, RowKeyRegex):
        return row_filters.RowKeyRegexFilter(spec.pattern)
    if isinstance(spec, FamilyEquals):
        return row_filters.FamilyNameRegexFilter(spec.pattern)
    if isinstance(spec, LatestVersions):
        return row_filters.CellsColumnLimitFilter(spec.n)
    if isinstance(spec, TimestampRange):
        return row_filters.TimestampRangeFilter(
            row_filters.TimestampRange(
                start=_unix(spec.start),
                end=_unix(spec.end),
            )
        )
    if isinstance(spec, ValueEquals):
        return row_filters.ValueRegexFilter(spec.value)
    raise TypeError(f"unsupported filter: {spec!r}")


def to_row_filter(chain: FilterChain) -> row_filters.RowFilter | None:
    if not chain:
        return None
    single = chain.single()
    if single is not None:
        return to_sdk_filter(single)
    return row_filters.RowFilterChain(filters=[to_sdk_filter(f) for f in chain.filters])


def _naive_utc(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def _token_refresh_handler(source: TokenSource) -> Callable[..., tuple[str, datetime]]:
    def handler(request: Any, scopes: Any = None) -> tuple[str, datetime]:
        del request, scopes
        tok = source.token()
        expiry = tok.expiry or (datetime.now(timezone.utc) + timedelta(hours=1))
        return tok.access_token, _naive_utc(expiry)

    return handler


def google_credentials(config: ResolvedConfig) -> Any:
    """Build google-auth credentials for the resolved configuration.

    Returns None when the client should fall back to application default
    credentials.
    """
    if config.credentials_path:
        try:
            creds, _ = google.auth.load_credentials_from_file(
                config.credentials_path, scopes=list(BIGTABLE_SCOPES)
            )
        except auth_exceptions.GoogleAuthError as e:
            raise BackendError(f"loading credentials from {config.credentials_path}: {e}") from e
        return creds
    if config.token_source is not None:
        tok = config.token_source.token()
        return google.oauth2.credentials.Credentials(
            token=tok.access_token,
            expiry=_naive_utc(tok.expiry),
            refresh_handler=_token_refresh_handler(config.token_source),
        )
    return None


class BigtableClient:
    def __init__(self, instance: Any) -> None:
        self._instance = instance

    def tables(self) -> list[str]:
        try:
            return sorted(t.table_id for t in self._instance.list_tables())
        except _BACKEND_ERRORS as e:
            raise BackendError(str(e)) from e

    def count(self, table: str) -> int:
        keys_only = row_filters.RowFilterChain(
            filters=[
                row_filters.CellsRowLimitFilter(1),
                row_filters.StripValueTransformerFilter(True),
            ]
        )
        try:
            return sum(1 for _ in self._instance.table(table).read_rows(filter_=keys_only))
        except _BACKEND_ERRORS as e:
            raise BackendError(str(e)) from e

    def lookup(self, req: LookupRequest) -> Any:
        try:
            row = self._instance.table(req.table).read_row(
                _key_bytes(req.row_key), filter_=to_row_filter(req.filter_chain)
            )
        except _BACKEND_ERRORS as e:
            raise BackendError(str(e)) from e
        if row is None:
            raise BackendError(f"row not found: {req.row_key}")
        return row

    def read(self, req: ReadRequest) -> Iterator[Any]:
        row_filter = to_row_filter(req.filter_chain)
        row_set = to_row_set(req.row_range)
        return self._iter_rows(req.table, row_set=row_set, limit=req.limit, row_filter=row_filter)

    def _iter_rows(self, table: str, *, row_set: Any, limit: int | None, row_filter: Any) -> Iterator[Any]:
        try:
            yield from self._instance.table(table).read_rows(
                row_set=row_set, limit=limit, filter_=row_filter
            )
        except _BACKEND_ERRORS as e:
            raise BackendError(str(e)) from e


def open_client(
    config: ResolvedConfig,
    *,
    client_factory: Callable[..., Any] = bigtable.Client,
) -> BigtableClient:
    instance_id = _require_str(config.instance, "instance", hint=INSTANCE_HINT)
    credentials = google_credentials(config)
    try:
        client = client_factory(
            project=config.project or None,
            credentials=credentials,
            admin=True,
        )
        instance = client.instance(instance_id)
    except _BACKEND_ERRORS + (OSError,) as e:
        raise BackendError(str(e)) from e
    return BigtableClient(instance)
