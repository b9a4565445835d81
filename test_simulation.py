"""
Tests for the simulation controller: setup, stepping, reset, the timed
run loop and isolated policy comparison.
"""
import asyncio
import random

import pytest

import simulation
from memory_model import (
    BELADY_SEQUENCE,
    FifoPolicy,
    PageKey,
    PolicyKind,
    ProcessDescriptor,
    ReplacementPolicy,
)
from simulation import (
    ActivityLog,
    ConfigurationError,
    NotInitializedError,
    SimState,
    SimulationController,
)

PAGE = 4096


def make_sim(frames=3, policy="fifo", seed=7, descriptors=None):
    sim = SimulationController(rng=random.Random(seed))
    if descriptors is None:
        descriptors = [ProcessDescriptor(0, "alpha", 6), ProcessDescriptor(1, "beta", 4)]
    sim.initialize(descriptors, frames * PAGE, PAGE, policy)
    return sim


def run_to_end(sim):
    while sim.step() is not None:
        pass
    return sim.stats


# -- initialize ---------------------------------------------------------------

class TestInitialize:

    def test_empty_table(self):
        sim = SimulationController()
        sim.initialize([ProcessDescriptor(0, "a", 3)], PAGE * 5, PAGE, "fifo")
        assert sim.frame_count == 5
        assert sim.frames.view() == [None] * 5
        assert sim.stats.total_accesses == 0
        assert (sim.stats.hits, sim.stats.faults, sim.stats.swap_ins, sim.stats.swap_outs) == (0, 0, 0, 0)
        assert sim.cursor == 0
        assert sim.state is SimState.INITIALIZED

    def test_frame_count_rounds_down(self):
        sim = SimulationController()
        sim.initialize([ProcessDescriptor(0, "a", 3)], PAGE * 5 + 100, PAGE)
        assert sim.frame_count == 5

    def test_no_descriptors(self):
        sim = SimulationController()
        with pytest.raises(ConfigurationError):
            sim.initialize([], PAGE * 4, PAGE)
        assert sim.state is SimState.UNINITIALIZED
        assert sim.log.messages("error")

    @pytest.mark.parametrize("ram, page", [
        (0, PAGE), (PAGE, 0), (-1, PAGE), (PAGE - 1, PAGE),
        (PAGE * 2.5, PAGE), (PAGE * 2, 4096.0), (True, 1), (PAGE, True), ("8192", PAGE),
    ])
    def test_bad_sizes(self, ram, page):
        sim = SimulationController()
        with pytest.raises(ConfigurationError):
            sim.initialize([ProcessDescriptor(0, "a", 3)], ram, page)
        assert sim.frames is None

    def test_negative_page_count(self):
        with pytest.raises(ConfigurationError):
            SimulationController().initialize([ProcessDescriptor(0, "a", -2)], PAGE, PAGE)

    @pytest.mark.parametrize("count", [2.0, True, "3"])
    def test_non_integer_page_count(self, count):
        with pytest.raises(ConfigurationError):
            SimulationController().initialize([ProcessDescriptor(0, "a", count)], PAGE, PAGE)

    def test_duplicate_process_ids(self):
        sim = SimulationController()
        descs = [ProcessDescriptor(0, "a", 2), ProcessDescriptor(1, "b", 2), ProcessDescriptor(0, "c", 2)]
        with pytest.raises(ConfigurationError, match="duplicate process id 0"):
            sim.initialize(descs, PAGE * 2, PAGE)
        assert not sim.is_initialized
        assert sim.log.messages("error")

    def test_unknown_policy(self):
        with pytest.raises(ConfigurationError):
            SimulationController().initialize([ProcessDescriptor(0, "a", 2)], PAGE, PAGE, "clock")

    def test_failed_reinitialize_keeps_previous_run(self):
        sim = make_sim()
        sim.step()
        with pytest.raises(ConfigurationError):
            sim.initialize([], PAGE, PAGE)
        assert sim.cursor == 1
        assert sim.frame_count == 3

    def test_seeded_workload_is_reproducible(self):
        assert make_sim(seed=11).workload == make_sim(seed=11).workload

    def test_controls_before_initialize(self):
        sim = SimulationController()
        with pytest.raises(NotInitializedError):
            sim.step()
        with pytest.raises(NotInitializedError):
            sim.reset()
        with pytest.raises(NotInitializedError):
            sim.compare()
        with pytest.raises(NotInitializedError):
            asyncio.run(sim.run(0))


# -- step ---------------------------------------------------------------------

class TestStep:

    def test_step_result(self):
        sim = make_sim()
        first = sim.workload[0]
        res = sim.step()
        assert res.step == 1
        assert res.reference == first
        assert not res.is_hit
        assert res.slot == 0
        assert res.evicted is None
        assert sim.cursor == 1
        assert sim.clock == 1

    def test_counters_hold_after_every_step(self):
        sim = make_sim(frames=3, policy="lru")
        while True:
            res = sim.step()
            s = sim.stats
            assert s.total_accesses == s.hits + s.faults
            assert s.swap_ins == s.faults
            assert s.swap_outs <= s.faults
            assert s.swap_outs == len(sim.swap)
            assert sim.frames.occupied_count <= sim.frame_count
            if res is None:
                break
        assert sim.stats.total_accesses == len(sim.workload)

    def test_occupancy_without_repeats(self):
        sim = make_sim(frames=4)
        sim.load_reference_string(range(10))
        while sim.step() is not None:
            assert sim.frames.occupied_count == min(sim.cursor, sim.frame_count)

    def test_completion(self):
        sim = make_sim()
        run_to_end(sim)
        assert sim.state is SimState.COMPLETED
        assert sim.finished
        assert sim.remaining == 0
        assert sim.progress == 100
        before = sim.stats.copy()
        assert sim.step() is None
        assert sim.stats == before
        assert "Simulation completed!" in sim.log.messages()

    def test_empty_workload_has_zero_hit_rate(self):
        sim = make_sim(descriptors=[ProcessDescriptor(0, "empty", 0)])
        assert sim.workload == []
        assert sim.step() is None
        assert sim.state is SimState.COMPLETED
        assert sim.stats.hit_rate == 0.0
        assert [r.hit_rate_percent for r in sim.compare()] == [0.0, 0.0, 0.0]

    def test_single_frame_distinct_pages(self):
        sim = make_sim(frames=1)
        sim.load_reference_string([0, 1, 2, 3, 4])
        for r in sim.compare():
            assert (r.fault_count, r.hit_count, r.swap_out_count) == (5, 0, 4)

    def test_belady_anomaly_by_resizing(self):
        sim = make_sim(frames=3)
        sim.load_reference_string(BELADY_SEQUENCE)
        assert run_to_end(sim).faults == 9
        sim.reinitialize(ram_capacity_bytes=4 * PAGE)
        assert sim.frame_count == 4
        assert sim.cursor == 0
        assert run_to_end(sim).faults == 10

    def test_reinitialize_switches_policy(self):
        sim = make_sim(frames=3)
        sim.load_reference_string(BELADY_SEQUENCE)
        sim.reinitialize(policy="optimal")
        assert sim.policy_kind is PolicyKind.OPTIMAL
        assert run_to_end(sim).faults == 7

    def test_next_victim(self):
        sim = make_sim(frames=2)
        sim.load_reference_string([0, 1, 2])
        assert sim.next_victim() == -1
        sim.step()
        sim.step()
        assert sim.next_victim() == 0

    def test_frame_details(self):
        sim = make_sim(frames=2, policy="lru")
        sim.load_reference_string([5, 6, 5])
        sim.step()
        details = sim.frame_details()
        assert details[0]["key"] == PageKey(0, 5)
        assert details[0]["meta"] == "IDLE:0"
        assert details[1] is None

    def test_memory_usage(self):
        sim = make_sim(frames=4)
        sim.load_reference_string([0, 1])
        sim.step()
        usage = sim.memory_usage()
        assert usage["used_kb"] == 4
        assert usage["free_kb"] == 12
        assert usage["swap_total_kb"] == 32


# -- reset --------------------------------------------------------------------

def test_reset_clears_state_and_keeps_workload():
    sim = make_sim()
    workload = list(sim.workload)
    for _ in range(8):
        sim.step()
    sim.reset()
    assert sim.workload == workload
    assert sim.cursor == 0
    assert sim.clock == 0
    assert sim.frames.occupied_count == 0
    assert len(sim.swap) == 0
    assert sim.stats.total_accesses == 0
    assert sim.state is SimState.INITIALIZED


def test_reset_is_idempotent():
    sim = make_sim()
    for _ in range(5):
        sim.step()
    sim.reset()
    once = (sim.snapshot(), sim.cursor, sim.clock, sim.state, list(sim.policy.queue))
    sim.reset()
    twice = (sim.snapshot(), sim.cursor, sim.clock, sim.state, list(sim.policy.queue))
    assert once == twice


def test_reset_clears_policy_bookkeeping():
    sim = make_sim(policy="lru")
    for _ in range(4):
        sim.step()
    assert sim.policy.last_access
    sim.reset()
    assert sim.policy.last_access == {}


# -- compare ------------------------------------------------------------------

class TestCompare:

    def test_leaves_running_simulation_untouched(self):
        sim = make_sim(frames=3)
        for _ in range(6):
            sim.step()
        frames, swap, stats = sim.frames.copy(), sim.swap.copy(), sim.stats.copy()
        policy, queue = sim.policy, list(sim.policy.queue)
        cursor, clock, state = sim.cursor, sim.clock, sim.state

        sim.compare()

        assert sim.frames == frames
        assert sim.swap == swap
        assert sim.stats == stats
        assert sim.policy is policy
        assert list(sim.policy.queue) == queue
        assert (sim.cursor, sim.clock, sim.state) == (cursor, clock, state)
        # and the simulation carries on from where it was
        assert sim.step().step == cursor + 1

    def test_one_record_per_policy(self):
        sim = make_sim(frames=3)
        results = sim.compare()
        assert [r.policy for r in results] == list(PolicyKind)
        total = len(sim.workload)
        for r in results:
            assert r.fault_count + r.hit_count == total
            assert r.swap_in_count == r.fault_count
            assert r.swap_out_count <= r.fault_count
            assert r.wall_clock_duration >= 0
            assert r.hit_rate_percent == round(r.hit_count / total * 100, 2)

    def test_requested_subset(self):
        results = make_sim().compare(["lru", PolicyKind.FIFO])
        assert [r.policy for r in results] == [PolicyKind.LRU, PolicyKind.FIFO]

    def test_belady_counts(self):
        sim = make_sim(frames=3)
        sim.load_reference_string(BELADY_SEQUENCE)
        faults = {r.policy: r.fault_count for r in sim.compare()}
        assert faults == {PolicyKind.FIFO: 9, PolicyKind.LRU: 10, PolicyKind.OPTIMAL: 7}

    @pytest.mark.parametrize("frames", [1, 2, 4, 6])
    def test_optimal_is_best(self, frames):
        results = {r.policy: r for r in make_sim(frames=frames, seed=frames).compare()}
        opt = results[PolicyKind.OPTIMAL].fault_count
        assert opt <= results[PolicyKind.FIFO].fault_count
        assert opt <= results[PolicyKind.LRU].fault_count

    def test_unknown_policy(self):
        sim = make_sim()
        with pytest.raises(ConfigurationError):
            sim.compare(["fifo", "random"])

    def test_restores_after_failure(self, monkeypatch):
        class Exploding(ReplacementPolicy):
            kind = PolicyKind.LRU

            def resolve(self, reference, frames, swap, now, lookahead=()):
                raise RuntimeError("boom")

        monkeypatch.setattr(simulation, "make_policy",
                            lambda kind: FifoPolicy() if kind is PolicyKind.FIFO else Exploding())
        sim = make_sim()
        sim.step()
        sim.step()
        frames, stats, policy = sim.frames.copy(), sim.stats.copy(), sim.policy
        with pytest.raises(RuntimeError):
            sim.compare(["fifo", "lru"])
        assert sim.frames == frames
        assert sim.stats == stats
        assert sim.policy is policy
        assert (sim.cursor, sim.clock) == (2, 2)


# -- run / pause / resume -----------------------------------------------------

class TestRun:

    def test_runs_to_completion(self):
        sim = make_sim()
        seen = []
        asyncio.run(sim.run(0, seen.append))
        assert sim.state is SimState.COMPLETED
        assert len(seen) == len(sim.workload)
        assert [r.step for r in seen] == list(range(1, len(seen) + 1))

    def test_pause_from_callback(self):
        sim = make_sim()

        def on_step(res):
            if res.step == 3:
                assert sim.pause()

        asyncio.run(sim.run(0, on_step))
        assert sim.state is SimState.PAUSED
        assert sim.cursor == 3

        asyncio.run(sim.resume(0))
        assert sim.state is SimState.COMPLETED
        assert sim.cursor == len(sim.workload)

    def test_pause_during_delay_stops_stepping(self):
        sim = make_sim()

        async def scenario():
            task = asyncio.create_task(sim.run(0.05))
            await asyncio.sleep(0.01)
            sim.pause()
            await asyncio.sleep(0.1)
            await task

        asyncio.run(scenario())
        assert sim.cursor == 1
        assert sim.state is SimState.PAUSED

    def test_reset_during_delay_stops_stepping(self):
        sim = make_sim()

        async def scenario():
            task = asyncio.create_task(sim.run(0.05))
            await asyncio.sleep(0.01)
            sim.reset()
            await task

        asyncio.run(scenario())
        assert sim.cursor == 0
        assert sim.state is SimState.INITIALIZED

    def test_cancelled_task_leaves_simulation_paused(self):
        sim = make_sim()

        async def scenario():
            task = asyncio.create_task(sim.run(0.05))
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())
        assert sim.state is SimState.PAUSED
        assert sim.cursor == 1

    def test_manual_step_while_running_is_rejected(self):
        sim = make_sim()
        rejected = []

        def on_step(res):
            if res.step == 1:
                rejected.append(sim.step())
                sim.pause()

        asyncio.run(sim.run(0, on_step))
        assert rejected == [None]
        assert sim.cursor == 1
        assert any("step()" in m for m in sim.log.messages("warning"))

    def test_run_after_completion_is_noop(self):
        sim = make_sim()
        run_to_end(sim)
        asyncio.run(sim.run(0))
        assert sim.state is SimState.COMPLETED

    def test_invalid_transitions_are_reported(self):
        sim = make_sim()
        assert sim.pause() is False
        asyncio.run(sim.resume(0))
        assert sim.cursor == 0
        assert sim.state is SimState.INITIALIZED
        warnings = sim.log.messages("warning")
        assert any("pause()" in m for m in warnings)
        assert any("resume()" in m for m in warnings)


# -- activity log -------------------------------------------------------------

def test_activity_log_is_bounded():
    log = ActivityLog()
    for i in range(80):
        log.info(f"entry {i}")
    assert len(log.entries) == 50
    assert log.messages()[0] == "entry 30"


def test_activity_log_listener():
    seen = []
    sim = SimulationController(log=ActivityLog(listener=seen.append))
    sim.initialize([ProcessDescriptor(0, "a", 2)], PAGE * 2, PAGE)
    assert seen[0].level == "success"
    assert "2 frames" in seen[0].message
