"""
Portscout Core Scanner Engine
Bounded-concurrency async scheduler with scan-wide cancellation
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Union

from portscout.core.cancel import CancellationToken, ProbeCancelled
from portscout.core.errors import ConfigError
from portscout.core.models import ProbeJob, ProbeOutcome, ScanKind, ScanTarget
from portscout.core.ports import parse_ports
from portscout.core.ratelimit import RateLimiter
from portscout.core.report import ResultAggregator, ScanReport
from portscout.core.target import resolve_target
from portscout.scanners import ProbeStrategy, create_strategy

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, ProbeOutcome], None]


@dataclass
class ScanOptions:
    """Configuration options for scanning"""
    scan_kind: ScanKind = ScanKind.CONNECT
    ports: Union[str, List[int]] = "1-1000"
    concurrency: int = 500
    timeout: float = 3.0
    rate_limit: int = 0  # probes per second, 0 = unlimited
    grab_banners: bool = False
    banner_timeout: float = 3.0
    interface: Optional[str] = None
    grace_period: float = 0.5

    def validate(self):
        if self.concurrency < 1:
            raise ConfigError(f"concurrency must be a positive integer, got {self.concurrency}")
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout}")
        if self.rate_limit < 0:
            raise ConfigError(f"rate limit cannot be negative, got {self.rate_limit}")
        if self.banner_timeout <= 0:
            raise ConfigError(f"banner timeout must be positive, got {self.banner_timeout}")
        if self.grace_period < 0:
            raise ConfigError(f"grace period cannot be negative, got {self.grace_period}")


class JobState(Enum):
    QUEUED = "queued"
    ADMITTED = "admitted"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Scanner:
    """Runs one scan of one target; cancel() ends it early with a partial report"""

    def __init__(self, options: Optional[ScanOptions] = None,
                 strategy: Optional[ProbeStrategy] = None,
                 progress: Optional[ProgressCallback] = None):
        self.options = options or ScanOptions()
        self.options.validate()
        self.strategy = strategy
        self.progress = progress
        self.token = CancellationToken()
        self.job_states: Dict[int, JobState] = {}
        self.running = 0
        self.peak_running = 0
        self.completed = 0

    def cancel(self):
        """Stop admitting jobs and abort running probes"""
        if not self.token.cancelled:
            logger.info("Scan cancellation requested")
        self.token.cancel()

    async def scan(self, target: Union[str, ScanTarget],
                   ports: Optional[Union[str, List[int]]] = None) -> ScanReport:
        """Main scan method"""
        port_list = parse_ports(ports if ports is not None else self.options.ports)
        if isinstance(target, str):
            target = await resolve_target(target, self.options.interface)

        strategy = self.strategy or create_strategy(
            self.options.scan_kind, target,
            banners=self.options.grab_banners,
            banner_timeout=self.options.banner_timeout,
            interface=self.options.interface,
        )
        aggregator = ResultAggregator(target, strategy.kind, ports_requested=len(port_list))

        semaphore = asyncio.Semaphore(self.options.concurrency)
        limiter = RateLimiter(self.options.rate_limit) if self.options.rate_limit else None
        self.job_states = {port: JobState.QUEUED for port in port_list}
        total = len(port_list)

        tasks = []
        try:
            # privilege and interface failures surface here, before any admission
            await strategy.open()
            logger.info(f"Starting {strategy.kind.label} scan of {target} on {len(port_list)} ports")
            for port in port_list:
                job = ProbeJob(target, port, strategy.kind, self.options.timeout)
                tasks.append(asyncio.ensure_future(
                    self._run_job(job, strategy, semaphore, limiter, aggregator, total)))
            await self._wait_for(tasks)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await strategy.close()

        report = aggregator.build(partial=self.token.cancelled)
        summary = report.summary
        logger.info(f"Scan of {target} finished in {report.elapsed:.2f}s: {summary.open} open, "
                    f"{summary.closed} closed, {summary.filtered} filtered, "
                    f"{summary.open_filtered} open|filtered"
                    + (" (partial)" if report.partial else ""))
        return report

    async def _wait_for(self, tasks: List[asyncio.Future]):
        """Wait for every job, or for cancellation plus the grace period"""
        if not tasks:
            return
        everything = asyncio.gather(*tasks, return_exceptions=True)
        cancelled = asyncio.ensure_future(self.token.wait())
        try:
            await asyncio.wait({everything, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()

        if not everything.done():
            _, stragglers = await asyncio.wait(tasks, timeout=self.options.grace_period)
            if stragglers:
                logger.warning(f"Force-cancelling {len(stragglers)} probes after grace period")
                for task in stragglers:
                    task.cancel()
        for result in await everything:
            if isinstance(result, Exception):
                raise result

    async def _run_job(self, job: ProbeJob, strategy: ProbeStrategy,
                       semaphore: asyncio.Semaphore, limiter: Optional[RateLimiter],
                       aggregator: ResultAggregator, total: int):
        port = job.port
        try:
            await self.token.guard(semaphore.acquire())
        except (ProbeCancelled, asyncio.CancelledError):
            self.job_states[port] = JobState.CANCELLED
            return

        try:
            self.token.raise_if_cancelled()
            self.job_states[port] = JobState.ADMITTED
            if limiter is not None:
                await self.token.guard(limiter.acquire())

            self.job_states[port] = JobState.RUNNING
            self.running += 1
            self.peak_running = max(self.peak_running, self.running)
            try:
                outcome = await strategy.probe(job, self.token)
            except (ProbeCancelled, asyncio.CancelledError):
                raise
            except Exception as e:
                logger.warning(f"Probe of {job.target.ip}:{port} failed: {e}")
                outcome = strategy.failed(job, e)
            finally:
                self.running -= 1

            aggregator.add(outcome)
            self.job_states[port] = JobState.COMPLETED
            self.completed += 1
            if self.progress is not None:
                self.progress(self.completed, total, outcome)
        except (ProbeCancelled, asyncio.CancelledError):
            self.job_states[port] = JobState.CANCELLED
        finally:
            semaphore.release()
