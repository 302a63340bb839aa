"""Tests for StatusReport rendering."""

from __future__ import annotations

import json
from datetime import UTC, datetime

from certcycle.core.types import CertificateType, LifecycleState
from certcycle.lifecycle.status import CandidateSummary, StatusReport
from certcycle.models.journal import FailureInfo

NOW = datetime(2026, 3, 1, tzinfo=UTC)


def _report(**overrides) -> StatusReport:
    values = {
        "state": LifecycleState.LETS_ENCRYPT_ACTIVE,
        "active_type": CertificateType.LETS_ENCRYPT,
        "domain": "example.com",
        "alternative_names": ("www.example.com",),
        "not_after": datetime(2026, 5, 30, tzinfo=UTC),
        "days_remaining": 90,
        "source_challenge": "http-01",
        "last_check_at": NOW,
        "last_outcome": "upgraded",
        "last_success_at": NOW,
        "last_failure": None,
        "last_reload_error": None,
        "candidates": (
            CandidateSummary(
                certificate_type=CertificateType.SELF_SIGNED,
                version="20260101T120000000000Z-aabbccdd",
                not_after=datetime(2027, 1, 1, tzinfo=UTC),
                days_remaining=306,
                valid=True,
                active=False,
            ),
            CandidateSummary(
                certificate_type=CertificateType.LETS_ENCRYPT,
                version="20260301T000000000000Z-11223344",
                not_after=datetime(2026, 5, 30, tzinfo=UTC),
                days_remaining=90,
                valid=True,
                active=True,
            ),
        ),
    }
    values.update(overrides)
    return StatusReport(**values)


class TestToDict:
    def test_json_serializable(self):
        data = json.loads(json.dumps(_report().to_dict()))
        assert data["state"] == "letsencrypt-active"
        assert data["active_type"] == "letsencrypt"
        assert data["alternative_names"] == ["www.example.com"]
        assert data["not_after"] == "2026-05-30T00:00:00+00:00"
        assert [c["certificate_type"] for c in data["candidates"]] == [
            "self-signed",
            "letsencrypt",
        ]
        assert data["candidates"][1]["active"] is True

    def test_empty_store(self):
        report = _report(
            state=LifecycleState.NO_CERTIFICATE,
            active_type=None,
            domain=None,
            alternative_names=(),
            not_after=None,
            days_remaining=None,
            source_challenge=None,
            last_check_at=None,
            last_outcome=None,
            last_success_at=None,
            candidates=(),
        )
        data = report.to_dict()
        assert data["active_type"] is None
        assert data["last_check_at"] is None
        assert data["candidates"] == []

    def test_failure_included(self):
        failure = FailureInfo(
            at=NOW,
            operation="renewal",
            reason="All challenge methods failed",
            details={"http-01": "connection refused"},
        )
        data = _report(last_failure=failure).to_dict()
        assert data["last_failure"]["details"] == {"http-01": "connection refused"}


class TestRenderText:
    def test_active_lets_encrypt(self):
        text = _report().render_text()
        assert "State:            letsencrypt-active" in text
        assert "Names:            example.com, www.example.com" in text
        assert "(90 days)" in text
        assert "Challenge:        http-01" in text
        # Active candidate is starred
        assert "* letsencrypt" in text
        assert "  self-signed" in text

    def test_never_checked(self):
        text = _report(last_check_at=None, last_success_at=None).render_text()
        assert "Last check:       never" in text
        assert "Last LE success:  never" in text

    def test_failure_and_reload_error(self):
        failure = FailureInfo(
            at=NOW,
            operation="upgrade",
            reason="All challenge methods failed",
            details={"http-01": "timeout", "dns-01": "no DNS credentials"},
        )
        text = _report(
            last_failure=failure,
            last_reload_error="nginx exited with status 1",
        ).render_text()
        assert "Last failure:     upgrade at 2026-03-01T00:00:00+00:00" in text
        assert "  http-01: timeout" in text
        assert "  dns-01: no DNS credentials" in text
        assert "Reload error:     nginx exited with status 1" in text

    def test_expired_candidate_marked(self):
        expired = CandidateSummary(
            certificate_type=CertificateType.LETS_ENCRYPT,
            version="v1",
            not_after=datetime(2026, 1, 1, tzinfo=UTC),
            days_remaining=-60,
            valid=False,
            active=False,
        )
        text = _report(candidates=(expired,)).render_text()
        assert "EXPIRED" in text
