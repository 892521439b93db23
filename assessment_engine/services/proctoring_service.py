"""
Proctoring Service

Counts tab switches during a live attempt and decides when the attempt
must be flagged and auto-submitted. The monitor only decides; the attempt
and event services apply the outcome and do the scoring.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(slots=True)
class ViolationOutcome:
    tab_switches: int
    limit: int
    warning: bool = False
    flagged: bool = False
    flag_reason: Optional[str] = None
    ignored: bool = False

    @property
    def auto_submit(self) -> bool:
        return self.flagged


class ProctoringMonitor:
    """Tab-switch policy for a timed attempt."""

    @staticmethod
    def flag_reason(tab_switches: int, limit: int) -> str:
        return f"Exceeded tab switch limit ({tab_switches}/{limit})"

    def report_violation(self, tab_switches: int, limit: int, terminal: bool = False) -> ViolationOutcome:
        """
        Register one more tab switch.

        A terminal attempt (submitted, expired or flagged) is left alone.
        Reaching the limit flags the attempt; sitting one below it raises
        an advisory warning.
        """
        if terminal:
            return ViolationOutcome(tab_switches=tab_switches, limit=limit, ignored=True)

        count = tab_switches + 1
        if count >= limit:
            return ViolationOutcome(
                tab_switches=count,
                limit=limit,
                flagged=True,
                flag_reason=self.flag_reason(count, limit),
            )
        return ViolationOutcome(tab_switches=count, limit=limit, warning=count == limit - 1)


_monitor: Optional[ProctoringMonitor] = None


def get_proctoring_monitor() -> ProctoringMonitor:
    global _monitor
    if _monitor is None:
        _monitor = ProctoringMonitor()
    return _monitor
