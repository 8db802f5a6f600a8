#!/usr/bin/env python3
"""
Tests for result aggregation and the scan report
"""

import ipaddress
import itertools

import pytest

from portscout.core.models import PortState, ProbeOutcome, ScanKind, ScanTarget
from portscout.core.report import ResultAggregator, summarize

TARGET = ScanTarget(ipaddress.ip_address("10.0.0.5"), "db.internal")

OUTCOMES = [
    ProbeOutcome(22, "tcp", PortState.OPEN, "ssh", response_time_ms=1.0),
    ProbeOutcome(80, "tcp", PortState.CLOSED, "http", response_time_ms=2.0),
    ProbeOutcome(443, "tcp", PortState.FILTERED, "https"),
    ProbeOutcome(3306, "tcp", PortState.OPEN, "mysql", response_time_ms=3.0),
    ProbeOutcome(8080, "tcp", PortState.CLOSED, "http-proxy", response_time_ms=4.0),
]


def build(outcomes, **kwargs):
    aggregator = ResultAggregator(TARGET, ScanKind.CONNECT, ports_requested=len(OUTCOMES))
    for outcome in outcomes:
        aggregator.add(outcome)
    return aggregator.build(**kwargs)


def test_order_is_independent_of_arrival():
    expected = build(OUTCOMES).outcomes
    assert [o.port for o in expected] == [22, 80, 443, 3306, 8080]
    for permutation in itertools.permutations(OUTCOMES):
        assert build(permutation).outcomes == expected


def test_duplicate_port_is_rejected():
    aggregator = ResultAggregator(TARGET, ScanKind.CONNECT)
    aggregator.add(OUTCOMES[0])
    with pytest.raises(ValueError):
        aggregator.add(OUTCOMES[0])
    assert len(aggregator) == 1


def test_summary_counts_and_latency():
    summary = build(OUTCOMES).summary
    assert (summary.open, summary.closed, summary.filtered, summary.open_filtered) == (2, 2, 1, 0)
    assert summary.total == 5
    assert summary.latency.samples == 4
    assert summary.latency.mean_ms == pytest.approx(2.5)
    assert summary.latency.median_ms == pytest.approx(2.5)
    assert summary.latency.p95_ms == pytest.approx(3.85)


def test_summary_without_timings():
    summary = summarize([ProbeOutcome(53, "udp", PortState.OPEN_FILTERED)])
    assert summary.open_filtered == 1
    assert summary.latency is None


def test_visible_hides_closed_ports():
    report = build(OUTCOMES)
    assert [o.port for o in report.visible()] == [22, 443, 3306]
    assert len(report.visible(show_closed=True)) == 5


def test_report_fields():
    report = build(OUTCOMES[:2], partial=True, elapsed=1.2345)
    assert report.partial
    assert report.duration_ms in (1234, 1235)
    assert report.ports_requested == 5
    assert report.outcome_for(22).service == "ssh"
    assert report.outcome_for(9999) is None
    assert report.open_ports == (22,)
