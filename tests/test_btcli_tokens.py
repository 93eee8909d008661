from __future__ import annotations

import json
import subprocess
from datetime import datetime, timedelta, timezone

import pytest

from btcli.cli_shared import CredentialResolutionError
from btcli.tokens import (
    GCLOUD_HELPER_ARGS,
    GcloudConfigHelper,
    GcloudSnapshot,
    HelperTokenSource,
    ReusingTokenSource,
    StaticTokenSource,
    Token,
    TokenSource,
    parse_gcloud_snapshot,
)

NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class _CountingSource(TokenSource):
    def __init__(self, *tokens: Token) -> None:
        self._tokens = list(tokens)
        self.calls = 0

    def token(self) -> Token:
        self.calls += 1
        return self._tokens.pop(0)


class _FailingSource(TokenSource):
    def token(self) -> Token:
        raise CredentialResolutionError("could not retrieve gcloud configuration")


def _helper_output(*, project: str = "proj-1", token: str = "tok-1", expiry: str = "2026-01-01T13:00:00Z") -> str:
    return json.dumps(
        {
            "configuration": {"properties": {"core": {"project": project}}},
            "credential": {"access_token": token, "token_expiry": expiry},
        }
    )


def test_reusing_source_returns_cached_token_before_expiry():
    cached = Token(access_token="a", expiry=NOW + timedelta(minutes=10))
    refresh = _CountingSource(Token(access_token="b", expiry=NOW + timedelta(hours=1)))
    source = ReusingTokenSource(cached, refresh, now=lambda: NOW)

    assert source.token() is cached
    assert source.token() is cached
    assert refresh.calls == 0


def test_reusing_source_refreshes_once_after_expiry_and_caches():
    cached = Token(access_token="a", expiry=NOW - timedelta(seconds=1))
    fresh = Token(access_token="b", expiry=NOW + timedelta(hours=1))
    refresh = _CountingSource(fresh)
    source = ReusingTokenSource(cached, refresh, now=lambda: NOW)

    assert source.token() is fresh
    assert source.token() is fresh
    assert refresh.calls == 1


def test_reusing_source_treats_expiry_equal_to_now_as_expired():
    cached = Token(access_token="a", expiry=NOW)
    fresh = Token(access_token="b", expiry=NOW + timedelta(hours=1))
    source = ReusingTokenSource(cached, _CountingSource(fresh), now=lambda: NOW)

    assert source.token() is fresh


def test_reusing_source_refreshes_when_token_absent_or_empty():
    fresh = Token(access_token="b", expiry=None)
    refresh = _CountingSource(fresh, fresh)

    assert ReusingTokenSource(None, refresh, now=lambda: NOW).token() is fresh
    assert ReusingTokenSource(Token(access_token=""), refresh, now=lambda: NOW).token() is fresh
    assert refresh.calls == 2


def test_reusing_source_honors_expiry_margin():
    cached = Token(access_token="a", expiry=NOW + timedelta(minutes=2))
    fresh = Token(access_token="b", expiry=NOW + timedelta(hours=1))
    source = ReusingTokenSource(
        cached,
        _CountingSource(fresh),
        expiry_margin=timedelta(minutes=5),
        now=lambda: NOW,
    )

    assert source.token() is fresh


def test_reusing_source_propagates_refresh_failure_and_keeps_old_token():
    cached = Token(access_token="a", expiry=NOW - timedelta(minutes=1))
    source = ReusingTokenSource(cached, _FailingSource(), now=lambda: NOW)

    with pytest.raises(CredentialResolutionError):
        source.token()
    with pytest.raises(CredentialResolutionError):
        source.token()


def test_token_without_expiry_never_expires():
    assert Token(access_token="a").valid_at(NOW + timedelta(days=3650))


def test_static_source_returns_wrapped_token():
    tok = Token(access_token="a", expiry=NOW)
    assert StaticTokenSource(tok).token() is tok


def test_helper_source_fetches_fresh_snapshot_each_call():
    class _Helper:
        def __init__(self) -> None:
            self.calls = 0

        def fetch_snapshot(self) -> GcloudSnapshot:
            self.calls += 1
            return GcloudSnapshot(project="p", access_token=f"t{self.calls}", token_expiry=None)

    helper = _Helper()
    source = HelperTokenSource(helper)

    assert source.token().access_token == "t1"
    assert source.token().access_token == "t2"


def test_parse_gcloud_snapshot_reads_project_and_credential():
    snap = parse_gcloud_snapshot(_helper_output())

    assert snap.project == "proj-1"
    assert snap.access_token == "tok-1"
    assert snap.token_expiry == datetime(2026, 1, 1, 13, 0, 0, tzinfo=timezone.utc)


def test_parse_gcloud_snapshot_accepts_nanosecond_and_offset_expiry():
    snap = parse_gcloud_snapshot(_helper_output(expiry="2026-01-01T13:00:00.123456789+02:00"))

    assert snap.token_expiry == datetime(2026, 1, 1, 11, 0, 0, 123456, tzinfo=timezone.utc)


def test_parse_gcloud_snapshot_tolerates_missing_credential():
    snap = parse_gcloud_snapshot(json.dumps({"configuration": {"properties": {"core": {"project": "p"}}}}))

    assert snap.project == "p"
    assert snap.access_token == ""
    assert snap.token_expiry is None


@pytest.mark.parametrize("raw", ["not json", "[]", json.dumps({"credential": {"token_expiry": "garbage"}})])
def test_parse_gcloud_snapshot_rejects_garbage_with_generic_message(raw):
    with pytest.raises(CredentialResolutionError, match="^could not parse gcloud configuration$"):
        parse_gcloud_snapshot(raw)


def test_gcloud_helper_runs_config_helper_command():
    calls: list[list[str]] = []

    def _runner(cmd, **kwargs):
        calls.append(cmd)
        assert kwargs["check"] is True
        return subprocess.CompletedProcess(cmd, 0, stdout=_helper_output(), stderr="")

    snap = GcloudConfigHelper(command="gcloud", runner=_runner).fetch_snapshot()

    assert calls == [["gcloud", *GCLOUD_HELPER_ARGS]]
    assert GCLOUD_HELPER_ARGS == (
        "config",
        "config-helper",
        "--format=json(configuration.properties.core.project,credential)",
    )
    assert snap.project == "proj-1"


def test_gcloud_helper_failure_does_not_leak_stderr():
    def _runner(cmd, **kwargs):
        raise subprocess.CalledProcessError(1, cmd, output="", stderr="secret-token-in-stderr")

    with pytest.raises(CredentialResolutionError) as exc:
        GcloudConfigHelper(command="gcloud", runner=_runner).fetch_snapshot()

    assert str(exc.value) == "could not retrieve gcloud configuration"
    assert "secret-token-in-stderr" not in str(exc.value)


def test_gcloud_helper_missing_binary_is_resolution_error():
    def _runner(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    with pytest.raises(CredentialResolutionError, match="could not retrieve gcloud configuration"):
        GcloudConfigHelper(command="gcloud-missing", runner=_runner).fetch_snapshot()
