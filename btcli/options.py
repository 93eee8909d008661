from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AbstractSet, Mapping, Sequence

from .cli_shared import OptionParseError, UsageError, ValidationError

ParsedOptions = dict[str, str]

DECODE_KEYS = frozenset({"decode", "decode_columns"})

COMMAND_OPTION_KEYS: dict[str, frozenset[str]] = {
    "lookup": DECODE_KEYS | {"version"},
    "read": DECODE_KEYS
    | {"count", "start", "end", "prefix", "version", "family", "value", "from", "to"},
}

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

# Go's ParseInt(s, 0, 64) reads "017" as octal; Python's int(s, 0) rejects it.
_LEGACY_OCTAL_RE = re.compile(r"[+-]?0(_?[0-7])+")
_INT_RE = re.compile(r"[+-]?(0[xX][0-9a-fA-F_]+|0[oO][0-7_]+|0[bB][01_]+|[1-9][0-9_]*|0)")


def parse_options(
    command: str,
    raw_args: Sequence[str],
    allowed_keys: AbstractSet[str] | None = None,
) -> ParsedOptions:
    """Split ``key=value`` arguments into a mapping.

    Values are kept verbatim and the last occurrence of a key wins.

    Raises:
        OptionParseError: On an argument without ``=`` or a key that the
            command does not accept.
    """
    if allowed_keys is None:
        if command not in COMMAND_OPTION_KEYS:
            raise UsageError(f"unknown command: {command}")
        allowed_keys = COMMAND_OPTION_KEYS[command]
    parsed: ParsedOptions = {}
    for arg in raw_args:
        i = arg.find("=")
        if i < 0:
            raise OptionParseError(f"invalid option: {arg}")
        key, val = arg[:i], arg[i + 1 :]
        if key not in allowed_keys:
            raise OptionParseError(f"unknown option: {arg}")
        parsed[key] = val
    return parsed


def parse_int(raw: str, *, name: str) -> int:
    """Parse an integer the way Go's ``strconv.ParseInt(raw, 0, 64)`` does."""
    try:
        if _LEGACY_OCTAL_RE.fullmatch(raw):
            out = int(raw.replace("_", ""), 8)
        elif _INT_RE.fullmatch(raw):
            out = int(raw, 0)
        else:
            raise ValueError(raw)
    except ValueError as e:
        raise ValidationError(f"invalid {name}: {raw!r} is not an integer") from e
    if out < INT64_MIN or out > INT64_MAX:
        raise ValidationError(f"invalid {name}: {raw!r} is out of range")
    return out


def _optional_int(parsed: Mapping[str, str], key: str) -> int | None:
    raw = parsed.get(key, "")
    if raw == "":
        return None
    return parse_int(raw, name=key)


def _optional_unix(parsed: Mapping[str, str], key: str) -> int | None:
    seconds = _optional_int(parsed, key)
    if seconds is None:
        return None
    try:
        datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise ValidationError(f"invalid {key}: {seconds} is not a representable timestamp") from e
    return seconds


@dataclass(frozen=True)
class QueryOptions:
    start: str = ""
    end: str = ""
    prefix: str = ""
    regex: str = ""
    family: str = ""
    value: str = ""
    version: int | None = None
    from_ts: int | None = None
    to_ts: int | None = None
    count: int | None = None
    decode: str = ""
    decode_columns: str = ""

    @classmethod
    def from_parsed(cls, parsed: Mapping[str, str]) -> "QueryOptions":
        """Build typed options, validating every integer-valued key.

        ``from`` and ``to`` must also be representable as UTC datetimes.
        """
        return cls(
            start=parsed.get("start", ""),
            end=parsed.get("end", ""),
            prefix=parsed.get("prefix", ""),
            regex=parsed.get("regex", ""),
            family=parsed.get("family", ""),
            value=parsed.get("value", ""),
            version=_optional_int(parsed, "version"),
            from_ts=_optional_unix(parsed, "from"),
            to_ts=_optional_unix(parsed, "to"),
            count=_optional_int(parsed, "count"),
            decode=parsed.get("decode", ""),
            decode_columns=parsed.get("decode_columns", ""),
        )
