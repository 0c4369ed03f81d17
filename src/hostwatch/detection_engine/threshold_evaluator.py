import logging
from typing import List

from hostwatch.models import Finding, FindingCategory, Snapshot, Thresholds


class ThresholdEvaluator:
    """Compare resource usage in a snapshot against configured thresholds.

    Stateless: a metric that stays above its threshold produces a finding on
    every evaluation.
    """

    def __init__(self):
        self.logger = self._setup_logger()

    def _setup_logger(self):
        return logging.getLogger('DetectionEngine')

    def evaluate(self, snapshot: Snapshot, thresholds: Thresholds) -> List[Finding]:
        findings = []
        metrics = [
            ('CPU', snapshot.cpu_percent, thresholds.cpu),
            ('RAM', snapshot.ram_percent, thresholds.ram),
            ('Disk', snapshot.disk_percent, thresholds.disk),
        ]

        for label, value, limit in metrics:
            if value is None:
                continue
            if value > limit:
                findings.append(Finding(FindingCategory.THRESHOLD_BREACH,
                                        f"{label} usage: {round(float(value), 2)}%"))
                self.logger.debug(f"{label} usage {value}% above threshold {limit}%")

        return findings
