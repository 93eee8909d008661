from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Callable

from .cli_shared import (
    BTCLI_RC_NAME,
    GOOGLE_APPLICATION_CREDENTIALS,
    ConfigParseError,
    _env_or_none,
    _eprint,
    _require_str,
)
from .tokens import (
    ConfigHelper,
    GcloudConfigHelper,
    HelperTokenSource,
    ReusingTokenSource,
    TokenSource,
)

RC_KEYS = ("project", "instance", "creds")
INSTANCE_HINT = "pass --instance or set instance in ~/.cbtrc"


@dataclass(frozen=True)
class RcValues:
    project: str = ""
    instance: str = ""
    creds: str = ""


@dataclass(frozen=True)
class ResolvedConfig:
    project: str
    instance: str
    credentials_path: str | None = None
    token_source: TokenSource | None = None

    @property
    def credential_source(self) -> str:
        if self.credentials_path:
            return "file"
        if self.token_source is not None:
            return "gcloud"
        return "application-default"


def default_rc_path() -> Path:
    return Path.home() / BTCLI_RC_NAME


def parse_rc_text(text: str, *, filename: str) -> RcValues:
    values = {k: "" for k in RC_KEYS}
    for line in text.splitlines():
        if not line.strip():
            continue
        i = line.find("=")
        if i < 0:
            raise ConfigParseError(f"bad line in {filename}: {line!r}")
        key, val = line[:i].strip(), line[i + 1 :].strip()
        if key not in values:
            raise ConfigParseError(f"unknown key in {filename}: {key!r}")
        values[key] = val
    return RcValues(**values)


def load_rc(path: Path | None = None) -> RcValues:
    p = path or default_rc_path()
    try:
        text = p.read_text(encoding="utf-8")
    except FileNotFoundError:
        return RcValues()
    except OSError as e:
        raise ConfigParseError(f"reading {p}: {e}") from e
    return parse_rc_text(text, filename=str(p))


def _pick(flag: str | None, fallback: str) -> str:
    if flag is not None:
        return flag.strip()
    return fallback


def resolve_config(
    *,
    project: str | None,
    instance: str | None,
    creds: str | None,
    rc_path: Path | None = None,
    env_or_none: Callable[..., str | None] = _env_or_none,
    helper: ConfigHelper | None = None,
    notice: Callable[[str], None] = _eprint,
    token_expiry_margin: timedelta = timedelta(0),
    require_instance: bool = False,
) -> ResolvedConfig:
    """Resolve project, instance and credentials for the Bigtable client.

    Precedence is explicit flags, then the ``~/.cbtrc`` dotfile, then the
    gcloud configuration helper. A flag counts as set when it is not None.
    The gcloud helper only runs when the project or the credentials file is
    still unknown after flags, dotfile and ``GOOGLE_APPLICATION_CREDENTIALS``.

    With ``require_instance`` a missing instance fails before the helper
    runs.

    Raises:
        ConfigParseError: If the dotfile is malformed.
        UsageError: If ``require_instance`` is set and no instance is known.
        CredentialResolutionError: If the helper fails or returns garbage.
    """
    rc = load_rc(rc_path)
    resolved_project = _pick(project, rc.project)
    resolved_instance = _pick(instance, rc.instance)
    resolved_creds = _pick(creds, rc.creds)
    if require_instance:
        _require_str(resolved_instance, "instance", hint=INSTANCE_HINT)

    if not resolved_creds:
        resolved_creds = env_or_none(GOOGLE_APPLICATION_CREDENTIALS) or ""
        if not resolved_creds:
            notice("-creds flag unset, will use gcloud credential")
    if not resolved_project:
        notice("-project flag unset, will use gcloud active project")

    if resolved_project and resolved_creds:
        return ResolvedConfig(
            project=resolved_project,
            instance=resolved_instance,
            credentials_path=resolved_creds,
        )

    helper = helper or GcloudConfigHelper()
    snapshot = helper.fetch_snapshot()

    if not resolved_project and snapshot.project:
        notice(f'gcloud active project is "{snapshot.project}"')
        resolved_project = snapshot.project

    if resolved_creds:
        return ResolvedConfig(
            project=resolved_project,
            instance=resolved_instance,
            credentials_path=resolved_creds,
        )

    source = ReusingTokenSource(
        snapshot.token(),
        HelperTokenSource(helper),
        expiry_margin=token_expiry_margin,
    )
    return ResolvedConfig(
        project=resolved_project,
        instance=resolved_instance,
        token_source=source,
    )
