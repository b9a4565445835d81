"""
SwapSim - page replacement simulator, entry point

Simulates FIFO, LRU and Optimal (Belady) replacement over a reference
string built from a set of processes. Each input file becomes one process
whose page count is its size divided by the page size.

Usage:
    uv run main.py [FILES...] [--ram-kb 16] [--page-size 4096] [--policy lru]
    uv run main.py --headless --seed 7 FILES...
"""
import argparse
import random
from dataclasses import dataclass
from typing import List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from export import comparison_summary
from file_loader import format_bytes, load_descriptors, synthetic_descriptors
from memory_model import PolicyKind
from simulation import SimulationController, SimulationError

# 4 frames of 4 KB against 3 x 8 synthetic pages, so replacement kicks in
DEFAULT_RAM_KB = 16

LOG_COLORS = {"info": "white", "success": "green", "warning": "yellow", "error": "bold red"}


@dataclass
class SimulationConfig:
    ram_kb: int = DEFAULT_RAM_KB
    page_size: int = 4096
    policy: PolicyKind = PolicyKind.FIFO
    delay: float = 0.5
    seed: Optional[int] = None
    processes: int = 3
    files: Optional[List[str]] = None

    def rng(self):
        return random.Random(self.seed)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Page replacement simulator")
    parser.add_argument("files", nargs="*", help="files to load as processes")
    parser.add_argument("--ram-kb", type=int, default=DEFAULT_RAM_KB, help="RAM size in KB")
    parser.add_argument("--page-size", type=int, default=4096, help="page size in bytes")
    parser.add_argument("--policy", default="fifo", choices=["fifo", "lru", "opt", "optimal"])
    parser.add_argument("--delay", type=float, default=0.5, help="seconds between steps")
    parser.add_argument("--seed", type=int, default=None, help="seed for the reference string")
    parser.add_argument("--processes", type=int, default=3,
                        help="synthetic processes to create when no files are given")
    parser.add_argument("--headless", action="store_true",
                        help="run to completion and compare all policies without the TUI")
    args = parser.parse_args(argv)
    config = SimulationConfig(
        ram_kb=args.ram_kb,
        page_size=args.page_size,
        policy=PolicyKind.parse(args.policy),
        delay=args.delay,
        seed=args.seed,
        processes=args.processes,
        files=args.files,
    )
    return config, args.headless


def build_descriptors(config: SimulationConfig):
    if config.files:
        return load_descriptors(config.files, config.page_size)
    return synthetic_descriptors(config.processes)


def run_headless(config: SimulationConfig, console: Console) -> int:
    sim = SimulationController(rng=config.rng())
    sim.log.listener = lambda e: console.print(e.message, style=LOG_COLORS.get(e.level), markup=False)
    try:
        descriptors = build_descriptors(config)
    except OSError as e:
        console.print(f"[bold red]Error loading files:[/] {escape(str(e))}")
        return 1
    for d in descriptors:
        size = format_bytes(d.size_bytes) if d.size_bytes else "synthetic"
        console.print(f"Process {d.id}: {d.name} ({size}, {d.page_count} pages)")
    try:
        sim.initialize(descriptors, config.ram_kb * 1024, config.page_size, config.policy)
    except SimulationError:
        return 1

    sim.log.listener = None
    while sim.step() is not None:
        pass
    s = sim.stats
    console.print(f"{config.policy.value}: {s.faults} faults, {s.hits} hits, "
                  f"{s.swap_outs} swap outs, hit rate {s.hit_rate:.2f}%")

    table = Table(title="Algorithm comparison")
    for col in ("Algorithm", "Page Faults", "Page Hits", "Hit Rate", "Swap Outs",
                "Swap Ins", "Execution Time (ms)"):
        table.add_column(col)
    results = sim.compare()
    for r in results:
        table.add_row(r.policy.value, str(r.fault_count), str(r.hit_count),
                      f"{r.hit_rate_percent:.2f}%", str(r.swap_out_count),
                      str(r.swap_in_count), f"{r.duration_ms:.2f}")
    console.print(table)
    for label, value in comparison_summary(results).items():
        console.print(f"[bold]{label}:[/] {value}")
    return 0


def main(argv=None):
    config, headless = parse_args(argv)
    if headless:
        return run_headless(config, Console())

    try:
        descriptors = build_descriptors(config)
    except OSError as e:
        Console(stderr=True).print(f"[bold red]Error loading files:[/] {escape(str(e))}")
        return 1

    from memory_ui import SwapSimApp
    app = SwapSimApp(descriptors, ram_kb=config.ram_kb, page_size=config.page_size,
                     policy=config.policy, delay=config.delay, rng=config.rng())
    app.run()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
