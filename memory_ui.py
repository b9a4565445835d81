import math
from datetime import datetime

from textual.app import App, ComposeResult
from textual.containers import Container
from textual.events import Blur, Click
from textual.reactive import reactive
from textual.widgets import Button, Footer, Input, Label, RichLog, Static
from textual_plotext import PlotextPlot

from export import comparison_summary, export_statistics_csv, save_simulation_state
from file_loader import format_bytes
from memory_model import BELADY_SEQUENCE, PolicyKind
from simulation import SimState, SimulationController, SimulationError

LOG_STYLES = {
    "info": "{}",
    "success": "[green]{}[/]",
    "warning": "[yellow]{}[/]",
    "error": "[bold red]{}[/]",
}

SWAP_VIEW_LIMIT = 20
MAX_RENDERED_FRAMES = 32


class SmartInput(Input):
    """Input that submits itself when it loses focus"""
    def on_blur(self, event: Blur) -> None:
        self.post_message(self.Submitted(self, self.value))


class AlgoStatCard(Static):
    """
    Comparison card for one policy

    Shows fault count, hit rate and run time from the last compare().
    """
    def __init__(self, kind: PolicyKind):
        super().__init__(id=f"card-{kind.value.lower()}")
        self.kind = kind

    def compose(self) -> ComposeResult:
        yield Label(self.kind.value, classes="card-title")
        yield Label("--", classes="card-rate")
        yield Label("Faults: --", classes="card-faults")
        yield Label("--", classes="card-time")

    def update_data(self, result, is_best: bool):
        self.query_one(".card-rate").update(f"{result.hit_rate_percent:.2f}%")
        self.query_one(".card-faults").update(f"Faults: {result.fault_count}")
        self.query_one(".card-time").update(f"{result.duration_ms:.2f}ms")
        if is_best:
            self.add_class("card-best")
        else:
            self.remove_class("card-best")

    def reset(self):
        self.query_one(".card-rate").update("--")
        self.query_one(".card-faults").update("Faults: --")
        self.query_one(".card-time").update("--")
        self.remove_class("card-best")

    def set_active(self, is_active: bool):
        if is_active:
            self.add_class("card-active")
        else:
            self.remove_class("card-active")


class StatsPanel(Static):
    """Running statistics of the active simulation"""

    def compose(self) -> ComposeResult:
        yield Label("", id="stats-counts")
        yield Label("", id="stats-memory")

    def update_data(self, sim: SimulationController):
        s = sim.stats
        self.query_one("#stats-counts").update(
            f"Faults: [red]{s.faults}[/]  Hits: [green]{s.hits}[/]  "
            f"Swap out: {s.swap_outs}  Swap in: {s.swap_ins}  "
            f"Total: {s.total_accesses}  Hit rate: [bold]{s.hit_rate:.2f}%[/]"
        )
        usage = sim.memory_usage()
        self.query_one("#stats-memory").update(
            f"RAM used: {usage['used_kb']} KB  free: {usage['free_kb']} KB  "
            f"Swap: {usage['swap_used']} pages / {usage['swap_total_kb']} KB  "
            f"Progress: {sim.cursor}/{len(sim.workload)}"
        )


class MemBlock(Static):
    """
    One frame of the frame table

    Renders its own style from the frame data handed in by the app.
    """
    frame_idx = reactive("0")
    page_num = reactive("--")
    meta_info = reactive("")

    def compose(self) -> ComposeResult:
        yield Label(f"F{self.frame_idx}", classes="mem-idx")
        yield Label(self.page_num, classes="mem-page")
        yield Label(self.meta_info, classes="mem-meta")

    def update_state(self, idx: int, data, is_victim: bool, flash: str = ""):
        """
        Args:
            idx: frame number
            data: frame details, None for an empty frame
            is_victim: frame the next fault would reclaim
            flash: "hit" or "miss" when this frame was touched by the last step
        """
        self.query_one(".mem-idx").update(f"F{idx}")
        self.classes = ""

        if data is None:
            self.query_one(".mem-page").update("--")
            self.query_one(".mem-meta").update("EMPTY")
            self.add_class("block-empty")
            return

        key = data["key"]
        self.query_one(".mem-page").update(f"P{key.owner_id}:{key.page_number}")
        self.query_one(".mem-meta").update(data["meta"])

        self.add_class("block-active")
        if flash:
            self.add_class(f"block-{flash}")
        elif is_victim:
            self.add_class("victim-frame")


class SwapSimApp(App):
    """Page replacement simulator TUI"""
    CSS_PATH = "styles.tcss"

    BINDINGS = [
        ("space", "toggle", "Start/Pause"),
        ("s", "step", "Step"),
        ("r", "reset", "Reset"),
        ("c", "compare", "Compare"),
        ("b", "belady", "Belady"),
        ("e", "export", "Export"),
        ("q", "quit", "Quit"),
    ]

    def __init__(self, descriptors, ram_kb=16, page_size=4096, policy=PolicyKind.FIFO,
                 delay=0.5, rng=None):
        super().__init__()
        self.descriptors = list(descriptors)
        self.ram_kb = ram_kb
        self.page_size = page_size
        self.delay = delay
        self.policy = PolicyKind.parse(policy)
        self.sim = SimulationController(rng=rng)
        self.mem_block_refs = []
        self.plot_data_x = []
        self.plot_data_y = []

    def compose(self) -> ComposeResult:
        yield Label("SwapSim - Page Replacement Simulator", classes="app-title")

        with Container(id="stats-panel"):
            for kind in PolicyKind:
                yield AlgoStatCard(kind)
            yield StatsPanel(id="stats-live")

        with Container(id="controls-panel"):
            with Container(id="setting-row"):
                yield Label("RAM KB:")
                yield SmartInput(value=str(self.ram_kb), type="integer", id="input-ram")
                yield Label("Page B:", classes="page-label")
                yield SmartInput(value=str(self.page_size), type="integer", id="input-page")

            with Container(id="algo-buttons"):
                for kind in PolicyKind:
                    yield Button(kind.value, id=f"btn-{kind.value.lower()}", variant="default")

            with Container(classes="action-row"):
                yield Button("START", id="btn-start", variant="success")
                yield Button("STEP", id="btn-step", variant="primary")
                yield Button("COMPARE", id="btn-compare", variant="warning")
                yield Button("BELADY", id="btn-belady", variant="error")

        with Container(id="log-panel"):
            with Container(id="chart-container"):
                yield PlotextPlot(id="hit-chart-plot")
            yield RichLog(id="sys-log", markup=True, wrap=True)

        yield Container(id="memory-panel")
        yield Static("No pages in swap space", id="swap-panel")
        yield Footer()

    async def on_mount(self):
        self.sim.log.listener = self.write_log
        self.init_chart()
        log = self.query_one("#sys-log")
        log.write("SwapSim initialized.")
        for d in self.descriptors:
            size = format_bytes(d.size_bytes) if d.size_bytes else "synthetic"
            log.write(f"Process {d.id}: {d.name} ({size}, {d.page_count} pages)")
        log.write("Keys: space start/pause, s step, r reset, c compare, b Belady, e export")
        await self.rebuild(self.ram_kb, self.page_size, self.policy)

    def write_log(self, entry):
        stamp = entry.timestamp.strftime("%H:%M:%S")
        style = LOG_STYLES.get(entry.level, "{}")
        self.query_one("#sys-log").write(f"[dim]{stamp}[/] " + style.format(entry.message))

    def init_chart(self):
        plt = self.query_one("#hit-chart-plot", PlotextPlot).plt
        plt.title("Hit Rate Trend")
        plt.theme("pro")
        plt.xlabel("")
        plt.ylabel("Hit %")
        plt.ylim(0, 100)

    def on_click(self, event: Click) -> None:
        focused = self.focused
        if focused and focused.id in ("input-ram", "input-page"):
            if event.widget != focused and not event.widget.can_focus:
                self.set_focus(None)

    async def on_input_submitted(self, event: Input.Submitted):
        if not event.value:
            return
        try:
            val = int(event.value)
        except ValueError:
            return
        if event.input.id == "input-ram":
            if val == self.ram_kb:
                return
            if 4 <= val <= 65536:
                await self.rebuild(val, self.page_size, self.policy)
            else:
                self.query_one("#sys-log").write("[red]Error: RAM must be 4-65536 KB[/]")
                event.input.value = str(self.ram_kb)
        elif event.input.id == "input-page":
            if val == self.page_size:
                return
            if val > 0:
                await self.rebuild(self.ram_kb, val, self.policy)
            else:
                self.query_one("#sys-log").write("[red]Error: page size must be positive[/]")
                event.input.value = str(self.page_size)

    async def on_button_pressed(self, event):
        bid = event.button.id
        if bid == "btn-start":
            self.action_toggle()
        elif bid == "btn-step":
            self.action_step()
        elif bid == "btn-compare":
            self.action_compare()
        elif bid == "btn-belady":
            await self.action_belady()
        elif bid.startswith("btn-"):
            await self.rebuild(self.ram_kb, self.page_size, PolicyKind.parse(bid[4:]))

    async def rebuild(self, ram_kb, page_size, policy):
        """Re-initialize the engine and the frame grid for new settings"""
        self._stop_simulation()
        try:
            if self.sim.is_initialized:
                self.sim.reinitialize(ram_kb * 1024, page_size, policy)
            else:
                self.sim.initialize(self.descriptors, ram_kb * 1024, page_size, policy)
        except SimulationError as e:
            self.query_one("#sys-log").write(f"[red]Error: {e}[/]")
            self.query_one("#input-ram").value = str(self.ram_kb)
            self.query_one("#input-page").value = str(self.page_size)
            return
        self.ram_kb, self.page_size, self.policy = ram_kb, page_size, PolicyKind.parse(policy)

        panel = self.query_one("#memory-panel")
        await panel.remove_children()
        shown = min(self.sim.frame_count, MAX_RENDERED_FRAMES)
        self.mem_block_refs = [MemBlock() for _ in range(shown)]
        await panel.mount(*self.mem_block_refs)
        self.update_memory_grid_layout(shown)
        if shown < self.sim.frame_count:
            self.query_one("#sys-log").write(
                f"[yellow]Showing the first {shown} of {self.sim.frame_count} frames[/]")
        self.set_policy_highlight(self.policy)
        self.reset_views()

    def update_memory_grid_layout(self, count):
        cols = 2 if count <= 4 else (4 if count <= 16 else 8)
        rows = math.ceil(count / cols)
        panel = self.query_one("#memory-panel")
        panel.styles.grid_size_columns = cols
        panel.styles.grid_size_rows = rows

    def set_policy_highlight(self, active: PolicyKind):
        for kind in PolicyKind:
            btn = self.query_one(f"#btn-{kind.value.lower()}", Button)
            btn.variant = "primary" if kind is active else "default"
            self.query_one(f"#card-{kind.value.lower()}", AlgoStatCard).set_active(kind is active)

    # -- actions --------------------------------------------------------------

    def action_toggle(self):
        if not self._ready():
            return
        state = self.sim.state
        if state is SimState.RUNNING:
            self.sim.pause()
            self._set_start_label("RESUME")
        elif state is SimState.COMPLETED:
            self.sim.log.info("Simulation already completed, press r to reset")
        else:
            coro = self.sim.resume if state is SimState.PAUSED else self.sim.run
            self._set_start_label("PAUSE")
            self.run_worker(coro(self.delay, self.on_sim_step), exclusive=True, group="sim")

    def action_step(self):
        try:
            res = self.sim.step()
        except SimulationError as e:
            self.query_one("#sys-log").write(f"[red]Error: {e}[/]")
            return
        if res is not None:
            self.render_step(res)
        self._check_finished()

    def action_reset(self):
        self._stop_simulation()
        try:
            self.sim.reset()
        except SimulationError as e:
            self.query_one("#sys-log").write(f"[red]Error: {e}[/]")
            return
        self.reset_views()
        self.query_one("#sys-log").write("[bold red]System Reset.[/]")

    def action_compare(self):
        try:
            results = self.sim.compare()
        except SimulationError as e:
            self.query_one("#sys-log").write(f"[red]Error: {e}[/]")
            return
        if not results:
            return
        best = min(results, key=lambda r: r.fault_count)
        for r in results:
            card = self.query_one(f"#card-{r.policy.value.lower()}", AlgoStatCard)
            card.update_data(r, r.policy is best.policy)
        log = self.query_one("#sys-log")
        for r in results:
            log.write(f"  {r.policy.value:<8} faults={r.fault_count:<5} hits={r.hit_count:<5} "
                      f"swap out={r.swap_out_count:<5} hit rate={r.hit_rate_percent:.2f}% "
                      f"({r.duration_ms:.2f}ms)")
        for label, value in comparison_summary(results).items():
            log.write(f"  [bold]{label}:[/] {value}")

    async def action_belady(self):
        await self.rebuild(self.ram_kb, self.page_size, PolicyKind.FIFO)
        if not self._ready():
            return
        self.sim.load_reference_string(BELADY_SEQUENCE)
        self.reset_views()
        log = self.query_one("#sys-log")
        log.write("[bold magenta]=== Belady's Anomaly Demo ===[/]")
        log.write("Seq: " + ",".join(str(p) for p in BELADY_SEQUENCE))
        log.write(f"1. Set RAM to {3 * self.page_size // 1024} KB (3 frames) -> Run -> Faults: 9")
        log.write(f"2. Set RAM to {4 * self.page_size // 1024} KB (4 frames) -> Run -> Faults: 10")

    def action_export(self):
        if not self._ready():
            return
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        export_statistics_csv(self.sim, f"swapsim-stats-{stamp}.csv")
        save_simulation_state(self.sim, f"swapsim-simulation-{stamp}.json")

    # -- rendering ------------------------------------------------------------

    def on_sim_step(self, res):
        self.render_step(res)
        self._check_finished()

    def render_step(self, res):
        self.plot_data_x.append(res.step)
        self.plot_data_y.append(self.sim.stats.hit_rate)
        # keep the chart to a sliding window
        if len(self.plot_data_x) > 60:
            self.plot_data_x.pop(0)
            self.plot_data_y.pop(0)
        self.refresh_chart()
        self.refresh_memory(res)

    def refresh_memory(self, res=None):
        details = self.sim.frame_details()
        victim_idx = self.sim.next_victim()
        for i, block in enumerate(self.mem_block_refs[:len(details)]):
            flash = ""
            if res is not None and i == res.slot:
                flash = "hit" if res.is_hit else "miss"
            block.update_state(i, details[i], i == victim_idx, flash)

        swap = self.sim.swap.view(last=SWAP_VIEW_LIMIT)
        swap_panel = self.query_one("#swap-panel", Static)
        if swap:
            cells = "  ".join(f"S{i} {key}" for i, key in enumerate(swap))
            swap_panel.update(f"Swap ({len(self.sim.swap)}): {cells}")
        else:
            swap_panel.update("No pages in swap space")
        self.query_one("#stats-live", StatsPanel).update_data(self.sim)

    def refresh_chart(self):
        plot_widget = self.query_one("#hit-chart-plot", PlotextPlot)
        plt = plot_widget.plt
        plt.clear_data()
        if self.plot_data_x:
            plt.plot(self.plot_data_x, self.plot_data_y, color="green", marker="dot")
        plot_widget.refresh()

    def reset_views(self):
        self.plot_data_x = []
        self.plot_data_y = []
        self.refresh_chart()
        self.refresh_memory()
        for kind in PolicyKind:
            self.query_one(f"#card-{kind.value.lower()}", AlgoStatCard).reset()
        self._set_start_label("START")

    def _check_finished(self):
        if self.sim.state is SimState.COMPLETED:
            self._set_start_label("FINISHED")

    def _set_start_label(self, label):
        btn = self.query_one("#btn-start", Button)
        btn.label = label
        if label == "PAUSE":
            btn.add_class("pause")
        else:
            btn.remove_class("pause")

    def _ready(self):
        if not self.sim.is_initialized:
            self.query_one("#sys-log").write("[red]Error: simulation is not initialized[/]")
            return False
        return True

    def _stop_simulation(self):
        if self.sim.state is SimState.RUNNING:
            self.sim.pause()
        self.workers.cancel_group(self, "sim")
