from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass
from typing import Any


class BtcliError(Exception):
    pass


class UsageError(BtcliError):
    pass


class OpError(BtcliError):
    pass


class ConfigParseError(UsageError):
    """Raised when the dotfile contains a malformed line or an unknown key."""


class OptionParseError(UsageError):
    """Raised when a key=value argument is malformed or not allowed."""


class ValidationError(UsageError):
    """Raised when option values conflict or fail type checks."""


class CredentialResolutionError(OpError):
    """Raised when the gcloud helper cannot be run or its output parsed."""


class BackendError(OpError):
    """Raised when the Bigtable client reports a failure."""


GOOGLE_APPLICATION_CREDENTIALS = "GOOGLE_APPLICATION_CREDENTIALS"
BTCLI_DECODE_TYPE = "BTCLI_DECODE_TYPE"
BTCLI_RC_NAME = ".cbtrc"


def _eprint(msg: str) -> None:
    print(msg, file=sys.stderr)


@dataclass(frozen=True)
class GlobalOpts:
    project: str | None = None
    instance: str | None = None
    creds: str | None = None
    quiet: bool = False


def _env_or_none(*names: str) -> str | None:
    for n in names:
        v = (os.environ.get(n) or "").strip()
        if v:
            return v
    return None


def _require_str(val: str | None, name: str, *, hint: str) -> str:
    v = (val or "").strip()
    if not v:
        raise UsageError(f"missing {name} ({hint})")
    return v


def _print_json(obj: Any, *, pretty: bool) -> None:
    if pretty:
        sys.stdout.write(json.dumps(obj, indent=2, sort_keys=True) + "\n")
    else:
        sys.stdout.write(json.dumps(obj, separators=(",", ":"), sort_keys=True) + "\n")


def _load_json_object(*, raw: str, label: str) -> dict[str, Any]:
    try:
        val = json.loads(raw)
    except Exception as e:
        raise CredentialResolutionError(f"could not parse {label}") from e
    if not isinstance(val, dict):
        raise CredentialResolutionError(f"could not parse {label}")
    return val
