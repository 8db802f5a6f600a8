"""
Result aggregation
Collects probe outcomes as they finish and builds the final ScanReport
"""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Tuple

import numpy as np

from portscout.core.models import PortState, ProbeOutcome, ScanKind, ScanTarget


@dataclass(frozen=True)
class LatencyStats:
    """Response time statistics over the probes that got an answer"""
    mean_ms: float
    median_ms: float
    p95_ms: float
    samples: int


@dataclass(frozen=True)
class ScanSummary:
    open: int = 0
    closed: int = 0
    filtered: int = 0
    open_filtered: int = 0
    latency: Optional[LatencyStats] = None

    @property
    def total(self) -> int:
        return self.open + self.closed + self.filtered + self.open_filtered


@dataclass(frozen=True)
class ScanReport:
    target: ScanTarget
    kind: ScanKind
    started_at: datetime
    elapsed: float
    outcomes: Tuple[ProbeOutcome, ...]
    summary: ScanSummary
    partial: bool = False
    ports_requested: int = 0

    @property
    def duration_ms(self) -> int:
        return int(round(self.elapsed * 1000))

    @property
    def open_ports(self) -> Tuple[int, ...]:
        return tuple(o.port for o in self.outcomes if o.state is PortState.OPEN)

    def visible(self, show_closed: bool = False) -> Tuple[ProbeOutcome, ...]:
        """Outcomes to display; closed ports are hidden unless asked for"""
        if show_closed:
            return self.outcomes
        return tuple(o for o in self.outcomes if o.state is not PortState.CLOSED)

    def outcome_for(self, port: int) -> Optional[ProbeOutcome]:
        for outcome in self.outcomes:
            if outcome.port == port:
                return outcome
        return None


def _latency(outcomes) -> Optional[LatencyStats]:
    samples = np.array([o.response_time_ms for o in outcomes
                        if o.response_time_ms is not None], dtype=float)
    if samples.size == 0:
        return None
    return LatencyStats(
        mean_ms=float(np.mean(samples)),
        median_ms=float(np.median(samples)),
        p95_ms=float(np.percentile(samples, 95)),
        samples=int(samples.size),
    )


def summarize(outcomes) -> ScanSummary:
    counts = {state: 0 for state in PortState}
    for outcome in outcomes:
        counts[outcome.state] += 1
    return ScanSummary(
        open=counts[PortState.OPEN],
        closed=counts[PortState.CLOSED],
        filtered=counts[PortState.FILTERED],
        open_filtered=counts[PortState.OPEN_FILTERED],
        latency=_latency(outcomes),
    )


class ResultAggregator:
    """Accumulates outcomes in arrival order; reports them sorted by port"""

    def __init__(self, target: ScanTarget, kind: ScanKind, ports_requested: int = 0,
                 started_at: Optional[datetime] = None):
        self.target = target
        self.kind = kind
        self.ports_requested = ports_requested
        self.started_at = started_at or datetime.now()
        self._start = time.monotonic()
        self._outcomes: Dict[int, ProbeOutcome] = {}

    def __len__(self) -> int:
        return len(self._outcomes)

    def add(self, outcome: ProbeOutcome):
        if outcome.port in self._outcomes:
            raise ValueError(f"duplicate outcome for port {outcome.port}")
        self._outcomes[outcome.port] = outcome

    def build(self, partial: bool = False, elapsed: Optional[float] = None) -> ScanReport:
        outcomes = tuple(self._outcomes[port] for port in sorted(self._outcomes))
        if elapsed is None:
            elapsed = time.monotonic() - self._start
        return ScanReport(
            target=self.target,
            kind=self.kind,
            started_at=self.started_at,
            elapsed=elapsed,
            outcomes=outcomes,
            summary=summarize(outcomes),
            partial=partial,
            ports_requested=self.ports_requested,
        )
