"""CSV statistics export and JSON state dumps for a simulation controller."""
import csv
import json
from datetime import datetime


def statistics_rows(sim):
    stats = sim.stats
    return [
        ("Metric", "Value"),
        ("RAM Size (KB)", sim.ram_capacity_bytes // 1024),
        ("Number of Frames", sim.frame_count),
        ("Algorithm", sim.policy_kind.value if sim.policy_kind else ""),
        ("Total Page Accesses", stats.total_accesses),
        ("Page Faults", stats.faults),
        ("Page Hits", stats.hits),
        ("Hit Rate (%)", f"{stats.hit_rate:.2f}"),
        ("Swap Outs", stats.swap_outs),
        ("Swap Ins", stats.swap_ins),
        ("Files Loaded", len(sim.descriptors)),
    ]


def export_statistics_csv(sim, path):
    with open(path, "w", newline="") as f:
        csv.writer(f).writerows(statistics_rows(sim))
    sim.log.success(f"Statistics exported to {path}")
    return path


def simulation_state(sim):
    stats = sim.stats
    return {
        "ramSize": sim.ram_capacity_bytes // 1024,
        "pageSize": sim.page_size_bytes,
        "algorithm": sim.policy_kind.value if sim.policy_kind else None,
        "files": [
            {"id": d.id, "name": d.name, "size": d.size_bytes, "pages": d.page_count}
            for d in sim.descriptors
        ],
        "statistics": {
            "pageFaults": stats.faults,
            "pageHits": stats.hits,
            "swapOuts": stats.swap_outs,
            "swapIns": stats.swap_ins,
            "totalAccesses": stats.total_accesses,
        },
        "timestamp": datetime.now().isoformat(),
    }


def save_simulation_state(sim, path):
    with open(path, "w") as f:
        json.dump(simulation_state(sim), f, indent=2)
    sim.log.success(f"Simulation state saved to {path}")
    return path


def best_algorithm(results, metric, higher_is_better=False):
    """Pick the comparison result that wins on ``metric``; first one wins ties"""
    if not results:
        return None
    best = results[0]
    for result in results[1:]:
        value, current = getattr(result, metric), getattr(best, metric)
        if (value > current) if higher_is_better else (value < current):
            best = result
    return best


def comparison_summary(results):
    """Best policy per headline metric, as shown under the comparison table"""
    if not results:
        return {}
    faults = best_algorithm(results, "fault_count")
    hits = best_algorithm(results, "hit_rate_percent", higher_is_better=True)
    fastest = best_algorithm(results, "wall_clock_duration")
    return {
        "Best for Page Faults": f"{faults.policy.value} ({faults.fault_count})",
        "Best Hit Rate": f"{hits.policy.value} ({hits.hit_rate_percent:.2f}%)",
        "Fastest Execution": f"{fastest.policy.value} ({fastest.duration_ms:.2f}ms)",
    }
