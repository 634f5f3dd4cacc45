"""Tests for bundle_keeper.security module."""

import pytest

from bundle_keeper.errors import ScanRejected
from bundle_keeper.security import RiskLevel, ScanReport, gate


class TestGate:
    """Tests for the scan acceptance gate."""

    def test_safe_passes(self):
        gate(ScanReport())

    def test_critical_rejected(self):
        report = ScanReport(level=RiskLevel.CRITICAL, alerts=["eval of remote payload"])

        with pytest.raises(ScanRejected) as exc_info:
            gate(report)

        assert exc_info.value.level == "CRITICAL"
        assert exc_info.value.alerts == ["eval of remote payload"]

    def test_critical_allowed_when_auto_reject_off(self, caplog):
        gate(ScanReport(level=RiskLevel.CRITICAL), auto_reject=False)
        assert "CRITICAL" in caplog.text

    def test_high_warns(self, caplog):
        gate(ScanReport(level=RiskLevel.HIGH, alerts=["a", "b"]))
        assert "HIGH" in caplog.text
