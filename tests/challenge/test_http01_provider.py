"""Tests for the webroot HTTP-01 provider."""

from __future__ import annotations

import io
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from certcycle.challenge.base import ChallengeError, DomainUnreachable
from certcycle.challenge.http01 import WELL_KNOWN_PATH, Http01Provider
from certcycle.config.settings import Http01Settings
from certcycle.core.types import ChallengeType, Readiness

TOKEN = "evaGxfADs6pSRb2LAv9IZf17Dt3juxGJ-PCt92wr-oA"
KEY_AUTHZ = f"{TOKEN}.thumbprint"


def _settings(webroot, *, self_check: bool = False) -> Http01Settings:
    return Http01Settings(
        enabled=True,
        webroot=str(webroot),
        self_check=self_check,
        self_check_host="127.0.0.1",
        self_check_port=8080,
        timeout_seconds=5,
    )


def _response(body: bytes) -> MagicMock:
    resp = MagicMock()
    resp.read.return_value = body
    resp.__enter__.return_value = resp
    resp.__exit__.return_value = False
    return resp


# ---------------------------------------------------------------------------
# prepare / cleanup
# ---------------------------------------------------------------------------


class TestHttp01Prepare:
    def test_writes_token_file(self, tmp_path):
        provider = Http01Provider(_settings(tmp_path))
        handle = provider.prepare("example.com", token=TOKEN, value=KEY_AUTHZ)

        path = tmp_path / WELL_KNOWN_PATH / TOKEN
        assert path.read_text() == KEY_AUTHZ
        assert handle.location == str(path)
        assert handle.challenge_type == ChallengeType.HTTP_01
        assert provider.await_ready(handle) == Readiness.READY

    def test_cleanup_removes_file(self, tmp_path):
        provider = Http01Provider(_settings(tmp_path))
        handle = provider.prepare("example.com", token=TOKEN, value=KEY_AUTHZ)
        provider.cleanup(handle)
        assert not (tmp_path / WELL_KNOWN_PATH / TOKEN).exists()
        # Second cleanup is harmless
        provider.cleanup(handle)

    @pytest.mark.parametrize("token", ["../etc/passwd", "a/b", "tok en", ""])
    def test_rejects_unsafe_token(self, tmp_path, token):
        provider = Http01Provider(_settings(tmp_path))
        with pytest.raises(ChallengeError, match="base64url") as exc_info:
            provider.prepare("example.com", token=token, value=KEY_AUTHZ)
        assert exc_info.value.retryable is False

    def test_unwritable_webroot(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("x")
        provider = Http01Provider(_settings(blocker))
        with pytest.raises(ChallengeError, match="could not write"):
            provider.prepare("example.com", token=TOKEN, value=KEY_AUTHZ)


# ---------------------------------------------------------------------------
# Loopback self-check
# ---------------------------------------------------------------------------


class TestHttp01SelfCheck:
    @patch("certcycle.challenge.http01.urllib.request.urlopen")
    def test_self_check_success(self, mock_urlopen, tmp_path):
        mock_urlopen.return_value = _response(KEY_AUTHZ.encode() + b"\n")
        provider = Http01Provider(_settings(tmp_path, self_check=True))

        provider.prepare("example.com", token=TOKEN, value=KEY_AUTHZ)

        req = mock_urlopen.call_args[0][0]
        assert req.full_url == f"http://127.0.0.1:8080/{WELL_KNOWN_PATH}/{TOKEN}"
        assert req.get_header("Host") == "example.com"
        assert mock_urlopen.call_args[1]["timeout"] == 5

    @patch("certcycle.challenge.http01.urllib.request.urlopen")
    def test_body_mismatch(self, mock_urlopen, tmp_path):
        mock_urlopen.return_value = _response(b"<html>default site</html>")
        provider = Http01Provider(_settings(tmp_path, self_check=True))

        with pytest.raises(DomainUnreachable, match="does not match") as exc_info:
            provider.prepare("example.com", token=TOKEN, value=KEY_AUTHZ)

        assert exc_info.value.retryable is True
        assert not (tmp_path / WELL_KNOWN_PATH / TOKEN).exists()

    @patch("certcycle.challenge.http01.urllib.request.urlopen")
    def test_http_error(self, mock_urlopen, tmp_path):
        mock_urlopen.side_effect = urllib.error.HTTPError(
            "http://127.0.0.1:8080/",
            404,
            "Not Found",
            {},
            io.BytesIO(b""),
        )
        provider = Http01Provider(_settings(tmp_path, self_check=True))
        with pytest.raises(DomainUnreachable, match="HTTP 404"):
            provider.prepare("example.com", token=TOKEN, value=KEY_AUTHZ)
        assert not (tmp_path / WELL_KNOWN_PATH / TOKEN).exists()

    @patch("certcycle.challenge.http01.urllib.request.urlopen")
    def test_connection_refused(self, mock_urlopen, tmp_path):
        mock_urlopen.side_effect = urllib.error.URLError(ConnectionRefusedError(111, "refused"))
        provider = Http01Provider(_settings(tmp_path, self_check=True))
        with pytest.raises(DomainUnreachable, match="could not connect"):
            provider.prepare("example.com", token=TOKEN, value=KEY_AUTHZ)
