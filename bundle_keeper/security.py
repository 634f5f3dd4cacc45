"""Risk scanner interface and the acceptance gate applied before registering a download."""

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path

from .errors import ScanRejected

logger = logging.getLogger(__name__)


class RiskLevel(IntEnum):
    SAFE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


@dataclass
class ScanReport:
    """Result of scanning a fetched tree."""
    level: RiskLevel = RiskLevel.SAFE
    alerts: list[str] = field(default_factory=list)


class Scanner:
    """Inspects a directory tree and reports its risk level."""

    def scan(self, tree: Path) -> ScanReport:
        raise NotImplementedError


def gate(report: ScanReport, auto_reject: bool = True) -> None:
    """
    Reject or warn about a scan report.

    CRITICAL raises ScanRejected when auto_reject is set; HIGH and an
    accepted CRITICAL are logged as warnings.
    """
    if report.level is RiskLevel.CRITICAL and auto_reject:
        raise ScanRejected(report.level.name, report.alerts)
    if report.level >= RiskLevel.HIGH:
        logger.warning(
            "Accepting tree with risk level %s (%d alerts)",
            report.level.name, len(report.alerts)
        )
