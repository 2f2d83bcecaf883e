"""Reason-code auto-submit allow-list tuning from historical outcomes."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from autopilot.services.types import DisputeRecord, StatusKind


DEFAULT_MIN_CASES = 3
DEFAULT_MIN_WIN_RATE_PCT = 30.0


@dataclass
class ReasonStats:
    reason: str
    won: int = 0
    lost: int = 0

    @property
    def cases(self) -> int:
        return self.won + self.lost

    @property
    def win_rate_pct(self) -> float:
        if self.cases == 0:
            return 0.0
        return round(self.won * 100.0 / self.cases, 2)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "reason": self.reason,
            "won": self.won,
            "lost": self.lost,
            "cases": self.cases,
            "win_rate_pct": self.win_rate_pct,
        }


@dataclass
class OptimizationResult:
    allowed_reasons: List[str]
    risky_reasons: List[str]
    stats: List[ReasonStats] = field(default_factory=list)
    fell_back: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "allowed_reasons": list(self.allowed_reasons),
            "risky_reasons": list(self.risky_reasons),
            "stats": [item.as_dict() for item in self.stats],
            "fell_back": self.fell_back,
        }


def reason_outcomes(records: Iterable[DisputeRecord]) -> Dict[str, ReasonStats]:
    outcomes: Dict[str, ReasonStats] = {}
    for record in records:
        kind = record.status_info.kind
        if kind == StatusKind.other:
            continue
        reason = str(record.reason or "").strip() or "unknown"
        stats = outcomes.setdefault(reason, ReasonStats(reason=reason))
        if kind == StatusKind.won:
            stats.won += 1
        else:
            stats.lost += 1
    return outcomes


def optimize_reasons(
    outcomes: Dict[str, ReasonStats],
    current_reasons: Optional[Iterable[str]],
    min_cases: int = DEFAULT_MIN_CASES,
    min_win_rate_pct: float = DEFAULT_MIN_WIN_RATE_PCT,
) -> OptimizationResult:
    """Drop reasons that keep losing; keep or add the rest.

    An empty allow-list means "allow everything", so a proposal that would
    strip every reason falls back to the current list instead.
    """
    current = [str(reason) for reason in (current_reasons or []) if str(reason or "").strip()]
    min_cases = max(1, int(min_cases))
    stats = sorted(outcomes.values(), key=lambda item: item.reason)

    risky = sorted(
        item.reason
        for item in stats
        if item.cases >= min_cases and item.win_rate_pct < float(min_win_rate_pct)
    )
    allowed = set(reason for reason in current if reason not in risky)
    allowed.update(item.reason for item in stats if item.reason not in risky)
    proposed = sorted(allowed)

    if not proposed and risky:
        return OptimizationResult(allowed_reasons=list(current), risky_reasons=risky, stats=stats, fell_back=True)
    return OptimizationResult(allowed_reasons=proposed, risky_reasons=risky, stats=stats, fell_back=False)
