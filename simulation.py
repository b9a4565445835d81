"""
Simulation controller

Drives one page reference at a time through the active replacement policy
and keeps every piece of mutable simulation state (frame table, swap log,
statistics, policy bookkeeping, cursor) on a single controller instance.

State machine:
    UNINITIALIZED -> INITIALIZED -> RUNNING <-> PAUSED -> COMPLETED
    reset() returns to INITIALIZED from any initialized state.
"""
import asyncio
import random
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from memory_model import (
    FrameTable,
    Outcome,
    PageKey,
    PageReference,
    PolicyKind,
    SecondaryStore,
    Statistics,
    generate_workload,
    make_policy,
    reference_string,
)


class SimulationError(Exception):
    pass


class ConfigurationError(SimulationError, ValueError):
    pass


class NotInitializedError(SimulationError):
    def __init__(self, message="simulation has not been initialized"):
        super().__init__(message)


class InvalidTransition(SimulationError):
    """Control call not allowed in the current state; reported, never raised"""


class SimState(str, Enum):
    UNINITIALIZED = "UNINITIALIZED"
    INITIALIZED = "INITIALIZED"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"


# ---------------------------------------------------------------------------
# Activity log
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LogEntry:
    level: str
    message: str
    timestamp: datetime


class ActivityLog:
    """Bounded log of recent engine events; the newest 50 are kept"""

    def __init__(self, maxlen=50, listener: Optional[Callable[[LogEntry], None]] = None):
        self.entries = deque(maxlen=maxlen)
        self.listener = listener

    def add(self, message, level="info"):
        entry = LogEntry(level, message, datetime.now())
        self.entries.append(entry)
        if self.listener is not None:
            self.listener(entry)
        return entry

    def info(self, message):
        return self.add(message, "info")

    def success(self, message):
        return self.add(message, "success")

    def warning(self, message):
        return self.add(message, "warning")

    def error(self, message):
        return self.add(message, "error")

    def messages(self, level=None):
        return [e.message for e in self.entries if level is None or e.level == level]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StepResult:
    step: int
    reference: PageReference
    outcome: Outcome
    slot: int
    evicted: Optional[PageKey] = None

    @property
    def is_hit(self):
        return self.outcome is Outcome.HIT


@dataclass(frozen=True)
class Snapshot:
    frames: List[Optional[PageKey]]
    swap: List[PageKey]
    statistics: Statistics


@dataclass(frozen=True)
class ComparisonResult:
    policy: PolicyKind
    fault_count: int
    hit_count: int
    swap_out_count: int
    swap_in_count: int
    hit_rate_percent: float
    wall_clock_duration: float  # seconds

    @property
    def duration_ms(self):
        return self.wall_clock_duration * 1000


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------

DEFAULT_PAGE_SIZE = 4096


def _is_int(value):
    return isinstance(value, int) and not isinstance(value, bool)


class SimulationController:

    def __init__(self, rng: Optional[random.Random] = None, log: Optional[ActivityLog] = None):
        self.rng = rng if rng is not None else random.Random()
        self.log = log if log is not None else ActivityLog()
        self.state = SimState.UNINITIALIZED
        self.descriptors = []
        self.workload = []
        self.ram_capacity_bytes = 0
        self.page_size_bytes = DEFAULT_PAGE_SIZE

        self.frames = None
        self.swap = SecondaryStore()
        self.stats = Statistics()
        self.policy = None
        self.cursor = 0     # index of the next reference to process
        self.clock = 0      # logical time, advanced once per processed reference

        # bumped by pause/reset/initialize; a run loop stops once it no longer matches
        self._run_token = 0

    # -- setup ----------------------------------------------------------------

    def initialize(self, descriptors, ram_capacity_bytes, page_size_bytes=DEFAULT_PAGE_SIZE,
                   policy=PolicyKind.FIFO, rng: Optional[random.Random] = None):
        descriptors = list(descriptors or [])
        try:
            frame_count, kind = self._validate(descriptors, ram_capacity_bytes, page_size_bytes, policy)
        except ConfigurationError as e:
            self.log.error(f"Configuration error: {e}")
            raise
        if rng is not None:
            self.rng = rng

        workload = generate_workload(descriptors, self.rng)

        self._cancel_run()
        self.descriptors = descriptors
        self.ram_capacity_bytes = ram_capacity_bytes
        self.page_size_bytes = page_size_bytes
        self.workload = workload
        self.frames = FrameTable(frame_count)
        self.policy = make_policy(kind)
        self._clear()

        self.log.success(
            f"Simulation initialized with {frame_count} frames using {kind.value} algorithm")
        self.log.info(
            f"Generated {len(workload)} page references from {len(descriptors)} process(es)")

    @staticmethod
    def _validate(descriptors, ram_capacity_bytes, page_size_bytes, policy):
        if not descriptors:
            raise ConfigurationError("at least one process descriptor is required")
        seen = set()
        for desc in descriptors:
            if not _is_int(desc.page_count) or desc.page_count < 0:
                raise ConfigurationError(f"invalid page count for {desc.name!r}: {desc.page_count!r}")
            # owners share one key space, so ids must not collide
            if desc.id in seen:
                raise ConfigurationError(f"duplicate process id {desc.id!r} ({desc.name!r})")
            seen.add(desc.id)
        if not _is_int(page_size_bytes):
            raise ConfigurationError(f"page size must be an integer, got {page_size_bytes!r}")
        if not _is_int(ram_capacity_bytes):
            raise ConfigurationError(f"RAM capacity must be an integer, got {ram_capacity_bytes!r}")
        if page_size_bytes <= 0:
            raise ConfigurationError(f"page size must be positive, got {page_size_bytes}")
        if ram_capacity_bytes <= 0:
            raise ConfigurationError(f"RAM capacity must be positive, got {ram_capacity_bytes}")
        frame_count = ram_capacity_bytes // page_size_bytes
        if frame_count < 1:
            raise ConfigurationError(
                f"RAM capacity {ram_capacity_bytes} B holds no {page_size_bytes} B page")
        try:
            kind = PolicyKind.parse(policy)
        except ValueError as e:
            raise ConfigurationError(str(e)) from None
        return frame_count, kind

    def load_reference_string(self, pages, owner_id=0, owner_name=""):
        """Replace the workload with a fixed page sequence and reset"""
        self._require_initialized()
        pages = list(pages)
        self.workload = reference_string(pages, owner_id, owner_name)
        self.reset()
        self.log.info("Loaded reference string: " + ",".join(str(p) for p in pages))

    def reinitialize(self, ram_capacity_bytes=None, page_size_bytes=None, policy=None):
        """Rebuild frames and policy with new settings, keeping the workload"""
        self._require_initialized()
        ram = self.ram_capacity_bytes if ram_capacity_bytes is None else ram_capacity_bytes
        page = self.page_size_bytes if page_size_bytes is None else page_size_bytes
        policy = self.policy.kind if policy is None else policy
        try:
            frame_count, kind = self._validate(self.descriptors, ram, page, policy)
        except ConfigurationError as e:
            self.log.error(f"Configuration error: {e}")
            raise
        self._cancel_run()
        self.ram_capacity_bytes = ram
        self.page_size_bytes = page
        self.frames = FrameTable(frame_count)
        self.policy = make_policy(kind)
        self._clear()
        self.log.info(f"Reconfigured: {frame_count} frames, {kind.value} algorithm")

    def reset(self):
        self._require_initialized()
        self._cancel_run()
        self._clear()
        self.log.warning("Simulation reset")

    def _clear(self):
        self.frames.clear()
        self.swap = SecondaryStore()
        self.stats = Statistics()
        self.policy.reset()
        self.cursor = 0
        self.clock = 0
        self.state = SimState.INITIALIZED

    # -- stepping -------------------------------------------------------------

    def step(self) -> Optional[StepResult]:
        """
        Process the next reference.

        Returns None once the workload is exhausted (state becomes COMPLETED)
        or when a timed run owns the timeline.
        """
        self._require_initialized()
        if self.state is SimState.RUNNING:
            self._invalid("step() while a run is in progress; pause first")
            return None
        result = self._advance()
        if result is None:
            self._complete()
            return None
        self._log_step(result)
        if self.finished:
            self._complete()
        return result

    def _advance(self) -> Optional[StepResult]:
        if self.cursor >= len(self.workload):
            return None
        reference = self.workload[self.cursor]
        self.clock += 1
        lookahead = self.workload[self.cursor + 1:] if self.policy.needs_lookahead else ()
        res = self.policy.resolve(reference, self.frames, self.swap, self.clock, lookahead)
        self.stats.record(res.outcome, res.evicted)
        self.cursor += 1
        return StepResult(self.cursor, reference, res.outcome, res.slot, res.evicted)

    def _complete(self):
        if self.state is not SimState.COMPLETED:
            self.state = SimState.COMPLETED
            self.log.success("Simulation completed!")

    def _log_step(self, result: StepResult):
        ref = result.reference
        msg = (f"Step {result.step}: {result.outcome.value} - Process {ref.owner_id}, "
               f"Page {ref.page_number} → Frame {result.slot}")
        if result.evicted is not None:
            msg += f" (swapped out {result.evicted})"
        self.log.add(msg, "success" if result.is_hit else "warning")

    # -- timed run ------------------------------------------------------------

    async def run(self, delay: float = 0.5, on_step: Optional[Callable[[StepResult], None]] = None):
        """
        Step through the workload, sleeping ``delay`` seconds between steps.

        pause(), reset() or initialize() stop the loop; the token is checked
        before sleeping and again on waking so a stale delay never steps.
        """
        self._require_initialized()
        if self.state is SimState.RUNNING:
            self._invalid("run() while already running")
            return
        if self.state is SimState.COMPLETED or self.finished:
            self._complete()
            return

        self._run_token += 1
        token = self._run_token
        self.state = SimState.RUNNING
        self.log.success("Simulation started")
        try:
            while True:
                result = self._advance()
                if result is None:
                    break
                self._log_step(result)
                if on_step is not None:
                    on_step(result)
                if self._run_token != token or self.finished:
                    break
                await asyncio.sleep(delay)
                if self._run_token != token:
                    break
        finally:
            if self._run_token == token and self.state is SimState.RUNNING:
                if self.finished:
                    self._complete()
                else:
                    # cancelled from outside (e.g. the hosting task was cancelled)
                    self.state = SimState.PAUSED

    def pause(self):
        if self.state is not SimState.RUNNING:
            self._invalid(f"pause() while {self.state.value.lower()}")
            return False
        self._cancel_run()
        self.state = SimState.PAUSED
        self.log.info("Simulation paused")
        return True

    async def resume(self, delay: float = 0.5, on_step=None):
        self._require_initialized()
        if self.state is not SimState.PAUSED:
            self._invalid(f"resume() while {self.state.value.lower()}")
            return
        await self.run(delay, on_step)

    def _cancel_run(self):
        self._run_token += 1

    # -- comparison -----------------------------------------------------------

    def compare(self, kinds=None) -> List[ComparisonResult]:
        """
        Play the whole workload once per policy on scratch state.

        The caller's frame table, swap log, statistics, policy, cursor and
        clock are restored afterwards, even if a run raises.
        """
        self._require_initialized()
        try:
            kinds = [PolicyKind.parse(k) for k in (kinds or list(PolicyKind))]
        except ValueError as e:
            raise ConfigurationError(str(e)) from None

        self.log.info("Starting algorithm comparison...")
        saved = (self.frames, self.swap, self.stats, self.policy, self.cursor, self.clock)
        frame_count = len(self.frames)
        results = []
        try:
            for kind in kinds:
                self.frames = FrameTable(frame_count)
                self.swap = SecondaryStore()
                self.stats = Statistics()
                self.policy = make_policy(kind)
                self.cursor = 0
                self.clock = 0

                start = time.perf_counter()
                while self._advance() is not None:
                    pass
                elapsed = time.perf_counter() - start

                results.append(ComparisonResult(
                    policy=kind,
                    fault_count=self.stats.faults,
                    hit_count=self.stats.hits,
                    swap_out_count=self.stats.swap_outs,
                    swap_in_count=self.stats.swap_ins,
                    hit_rate_percent=round(self.stats.hit_rate, 2),
                    wall_clock_duration=elapsed,
                ))
        finally:
            self.frames, self.swap, self.stats, self.policy, self.cursor, self.clock = saved
        self.log.success("Algorithm comparison completed")
        return results

    # -- views ----------------------------------------------------------------

    @property
    def is_initialized(self):
        return self.state is not SimState.UNINITIALIZED

    @property
    def frame_count(self):
        return len(self.frames) if self.frames is not None else 0

    @property
    def policy_kind(self) -> Optional[PolicyKind]:
        return self.policy.kind if self.policy is not None else None

    @property
    def finished(self):
        return self.cursor >= len(self.workload)

    @property
    def remaining(self):
        return max(0, len(self.workload) - self.cursor)

    @property
    def progress(self) -> float:
        if not self.workload:
            return 0.0
        return self.cursor / len(self.workload) * 100

    def snapshot(self) -> Snapshot:
        self._require_initialized()
        return Snapshot(self.frames.view(), self.swap.view(), self.stats.copy())

    def frame_details(self):
        """Per-frame display data with the policy's bookkeeping hint"""
        self._require_initialized()
        details = []
        for frame in self.frames:
            if frame.is_empty:
                details.append(None)
                continue
            details.append({
                "key": frame.key,
                "meta": self.policy.frame_meta(frame, self.clock),
            })
        return details

    def next_victim(self):
        """Slot the next fault would reclaim, -1 while a frame is free"""
        self._require_initialized()
        lookahead = self.workload[self.cursor + 1:] if self.policy.needs_lookahead else ()
        return self.policy.predict_victim(self.frames, lookahead)

    def memory_usage(self):
        used_frames = self.frames.occupied_count if self.frames is not None else 0
        ram_kb = self.ram_capacity_bytes // 1024
        used_kb = used_frames * self.page_size_bytes // 1024
        return {
            "used_kb": used_kb,
            "free_kb": ram_kb - used_kb,
            "swap_used": len(self.swap),
            "swap_total_kb": ram_kb * 2,
        }

    # -- helpers --------------------------------------------------------------

    def _require_initialized(self):
        if self.state is SimState.UNINITIALIZED:
            raise NotInitializedError()

    def _invalid(self, message):
        self.log.warning(str(InvalidTransition(message)))
