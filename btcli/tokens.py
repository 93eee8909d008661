"""Access tokens and the gcloud configuration helper.

Token sources produce short-lived OAuth2 access tokens for the Bigtable
client:

- StaticTokenSource: a fixed token, returned as-is.
- HelperTokenSource: asks the configuration helper for a fresh snapshot on
  every call.
- ReusingTokenSource: caches a token and only consults its refresh source
  once the cached token has expired.

The helper is an injectable capability so tests can substitute a fake for
the real ``gcloud`` subprocess.
"""

from __future__ import annotations

import subprocess
import sys
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol, Sequence

from .cli_shared import CredentialResolutionError, _load_json_object

GCLOUD_HELPER_ARGS = (
    "config",
    "config-helper",
    "--format=json(configuration.properties.core.project,credential)",
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Token:
    access_token: str
    expiry: datetime | None = None
    token_type: str = "Bearer"

    def valid_at(self, now: datetime, *, margin: timedelta = timedelta(0)) -> bool:
        if not self.access_token:
            return False
        if self.expiry is None:
            return True
        return self.expiry - margin > now


@dataclass(frozen=True)
class GcloudSnapshot:
    project: str
    access_token: str
    token_expiry: datetime | None

    def token(self) -> Token:
        return Token(access_token=self.access_token, expiry=self.token_expiry)


class ConfigHelper(Protocol):
    def fetch_snapshot(self) -> GcloudSnapshot: ...


class TokenSource(ABC):
    @abstractmethod
    def token(self) -> Token:
        """Return a token usable for the next request.

        Raises:
            CredentialResolutionError: If no token can be produced.
        """
        ...


class StaticTokenSource(TokenSource):
    def __init__(self, token: Token) -> None:
        self._token = token

    def token(self) -> Token:
        return self._token


class HelperTokenSource(TokenSource):
    def __init__(self, helper: ConfigHelper) -> None:
        self._helper = helper

    def token(self) -> Token:
        return self._helper.fetch_snapshot().token()


class ReusingTokenSource(TokenSource):
    """Cache a token and refresh it through another source on expiry.

    A cached token is reused while its expiry is strictly in the future
    (shifted earlier by ``expiry_margin``). Refresh failures propagate
    unchanged and leave the previous token cached. The check-then-refresh
    sequence holds a lock, so concurrent callers trigger at most one refresh.
    """

    def __init__(
        self,
        initial: Token | None,
        refresh: TokenSource,
        *,
        expiry_margin: timedelta = timedelta(0),
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._token = initial
        self._refresh = refresh
        self._margin = expiry_margin
        self._now = now
        self._lock = threading.Lock()

    def token(self) -> Token:
        with self._lock:
            current = self._token
            if current is not None and current.valid_at(self._now(), margin=self._margin):
                return current
            fresh = self._refresh.token()
            self._token = fresh
            return fresh


def gcloud_command() -> str:
    if sys.platform.startswith("win"):
        return "gcloud.cmd"
    return "gcloud"


def _parse_expiry(raw: object) -> datetime | None:
    text = str(raw or "").strip()
    if not text:
        return None
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    # gcloud may emit nanoseconds; fromisoformat accepts at most microseconds.
    if "." in text:
        head, _, rest = text.partition(".")
        digits = ""
        while rest and rest[0].isdigit():
            digits += rest[0]
            rest = rest[1:]
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest}"
    out = datetime.fromisoformat(text)
    if out.tzinfo is None:
        out = out.replace(tzinfo=timezone.utc)
    return out


def parse_gcloud_snapshot(raw: str) -> GcloudSnapshot:
    """Parse ``gcloud config config-helper --format=json(...)`` output.

    Raises:
        CredentialResolutionError: If the output is not the expected JSON
            object. The message never includes the raw output.
    """
    doc = _load_json_object(raw=raw, label="gcloud configuration")
    try:
        configuration = doc.get("configuration") or {}
        properties = configuration.get("properties") or {}
        core = properties.get("core") or {}
        credential = doc.get("credential") or {}
        project = str(core.get("project") or "").strip()
        access_token = str(credential.get("access_token") or "")
        expiry = _parse_expiry(credential.get("token_expiry"))
    except (AttributeError, TypeError, ValueError) as e:
        raise CredentialResolutionError("could not parse gcloud configuration") from e
    return GcloudSnapshot(project=project, access_token=access_token, token_expiry=expiry)


class GcloudConfigHelper:
    """Run ``gcloud config config-helper`` and parse its JSON snapshot."""

    def __init__(
        self,
        command: str | None = None,
        args: Sequence[str] = GCLOUD_HELPER_ARGS,
        *,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self.command = command or gcloud_command()
        self.args = tuple(args)
        self._runner = runner

    def fetch_snapshot(self) -> GcloudSnapshot:
        try:
            proc = self._runner(
                [self.command, *self.args],
                capture_output=True,
                text=True,
                check=True,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise CredentialResolutionError("could not retrieve gcloud configuration") from e
        return parse_gcloud_snapshot(proc.stdout or "")
