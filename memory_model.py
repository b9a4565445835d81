import random
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple, Optional


class PageKey(NamedTuple):
    """(owner, page) pair identifying one page across all processes"""
    owner_id: int
    page_number: int

    def __str__(self):
        return f"P{self.owner_id}:{self.page_number}"


@dataclass(frozen=True)
class ProcessDescriptor:
    id: int
    name: str
    page_count: int
    size_bytes: int = 0


@dataclass(frozen=True)
class PageReference:
    owner_id: int
    page_number: int
    owner_name: str = ""

    @property
    def key(self):
        return PageKey(self.owner_id, self.page_number)


class Outcome(str, Enum):
    HIT = "HIT"
    MISS = "MISS"


class PolicyKind(str, Enum):
    FIFO = "FIFO"
    LRU = "LRU"
    OPTIMAL = "OPTIMAL"

    @classmethod
    def parse(cls, value):
        """Accept a PolicyKind or a case-insensitive name ('opt' is OPTIMAL)"""
        if isinstance(value, cls):
            return value
        name = str(value).strip().upper()
        if name == "OPT":
            name = "OPTIMAL"
        try:
            return cls(name)
        except ValueError:
            raise ValueError(f"unknown replacement policy: {value!r}") from None


# ---------------------------------------------------------------------------
# Frame table
# ---------------------------------------------------------------------------

class Frame:
    __slots__ = ("key", "loaded_at", "last_access")

    def __init__(self, key=None, loaded_at=0, last_access=0):
        self.key = key
        self.loaded_at = loaded_at      # logical time of admission
        self.last_access = last_access  # logical time of last reference

    @property
    def is_empty(self):
        return self.key is None

    def __eq__(self, other):
        if not isinstance(other, Frame):
            return NotImplemented
        return (self.key, self.loaded_at, self.last_access) == \
               (other.key, other.loaded_at, other.last_access)

    def __repr__(self):
        if self.key is None:
            return "Frame(empty)"
        return f"Frame({self.key}, loaded_at={self.loaded_at}, last_access={self.last_access})"


class FrameTable:
    """
    Fixed-size array of frames standing in for primary memory.

    A reverse index from PageKey to slot keeps lookup O(1) and enforces
    that a page is resident in at most one slot.
    """

    def __init__(self, frame_count: int):
        if frame_count < 1:
            raise ValueError("frame table needs at least one frame")
        self.frames = [Frame() for _ in range(frame_count)]
        self._index = {}

    def __len__(self):
        return len(self.frames)

    def __getitem__(self, slot):
        return self.frames[slot]

    def __iter__(self):
        return iter(self.frames)

    def __eq__(self, other):
        if not isinstance(other, FrameTable):
            return NotImplemented
        return self.frames == other.frames

    def lookup(self, key: PageKey) -> Optional[int]:
        return self._index.get(key)

    def first_empty(self) -> Optional[int]:
        for i, frame in enumerate(self.frames):
            if frame.is_empty:
                return i
        return None

    @property
    def occupied_count(self):
        return len(self._index)

    @property
    def is_full(self):
        return len(self._index) == len(self.frames)

    def place_into_empty(self, slot: int, key: PageKey, now: int = 0):
        frame = self.frames[slot]
        if not frame.is_empty:
            raise ValueError(f"frame {slot} is occupied by {frame.key}")
        if key in self._index:
            raise ValueError(f"{key} is already resident in frame {self._index[key]}")
        frame.key = key
        frame.loaded_at = now
        frame.last_access = now
        self._index[key] = slot

    def evict_and_replace(self, slot: int, key: PageKey, now: int = 0) -> PageKey:
        frame = self.frames[slot]
        if frame.is_empty:
            raise ValueError(f"frame {slot} is empty, nothing to evict")
        if key in self._index:
            raise ValueError(f"{key} is already resident in frame {self._index[key]}")
        evicted = frame.key
        del self._index[evicted]
        frame.key = key
        frame.loaded_at = now
        frame.last_access = now
        self._index[key] = slot
        return evicted

    def touch(self, slot: int, now: int):
        self.frames[slot].last_access = now

    def clear(self):
        for frame in self.frames:
            frame.key = None
            frame.loaded_at = 0
            frame.last_access = 0
        self._index.clear()

    def copy(self):
        clone = FrameTable(len(self.frames))
        clone.frames = [Frame(f.key, f.loaded_at, f.last_access) for f in self.frames]
        clone._index = dict(self._index)
        return clone

    def view(self):
        """Slot contents for display: a PageKey or None per frame"""
        return [f.key for f in self.frames]


# ---------------------------------------------------------------------------
# Secondary store and statistics
# ---------------------------------------------------------------------------

class SwapEntry(NamedTuple):
    key: PageKey
    evicted_at: int


class SecondaryStore:
    """Append-only log of every page swapped out of the frame table"""

    def __init__(self, entries=None):
        self.entries = list(entries) if entries else []

    def append(self, key: PageKey, evicted_at: int):
        self.entries.append(SwapEntry(key, evicted_at))

    def __len__(self):
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def __eq__(self, other):
        if not isinstance(other, SecondaryStore):
            return NotImplemented
        return self.entries == other.entries

    def copy(self):
        return SecondaryStore(self.entries)

    def view(self, last=None):
        keys = [e.key for e in self.entries]
        return keys[-last:] if last else keys


@dataclass
class Statistics:
    hits: int = 0
    faults: int = 0
    swap_outs: int = 0
    swap_ins: int = 0
    total_accesses: int = 0

    def record(self, outcome: Outcome, evicted: Optional[PageKey] = None):
        self.total_accesses += 1
        if outcome is Outcome.HIT:
            self.hits += 1
            return
        # every fault swaps a page in, only reclaiming a slot swaps one out
        self.faults += 1
        self.swap_ins += 1
        if evicted is not None:
            self.swap_outs += 1

    @property
    def hit_rate(self) -> float:
        if self.total_accesses == 0:
            return 0.0
        return self.hits / self.total_accesses * 100

    @property
    def miss_rate(self) -> float:
        if self.total_accesses == 0:
            return 0.0
        return self.faults / self.total_accesses * 100

    def copy(self):
        return Statistics(self.hits, self.faults, self.swap_outs,
                          self.swap_ins, self.total_accesses)


# ---------------------------------------------------------------------------
# Replacement policies
# ---------------------------------------------------------------------------

class Resolution(NamedTuple):
    outcome: Outcome
    slot: int
    evicted: Optional[PageKey] = None


class ReplacementPolicy:
    """
    Common hit / empty-slot / eviction flow shared by every policy.

    Subclasses only choose a victim and keep their own bookkeeping through
    the on_hit / on_admit hooks. Statistics are never touched here.
    """
    kind: PolicyKind
    needs_lookahead = False

    def reset(self):
        pass

    def resolve(self, reference, frames: FrameTable, swap: SecondaryStore,
                now: int, lookahead=()) -> Resolution:
        key = reference.key
        slot = frames.lookup(key)
        if slot is not None:
            self.on_hit(slot, key, frames, now)
            return Resolution(Outcome.HIT, slot)

        slot = frames.first_empty()
        if slot is not None:
            frames.place_into_empty(slot, key, now)
            self.on_admit(slot, key, now)
            return Resolution(Outcome.MISS, slot)

        slot = self.select_victim(frames, lookahead)
        evicted = frames.evict_and_replace(slot, key, now)
        swap.append(evicted, now)
        self.on_admit(slot, key, now)
        return Resolution(Outcome.MISS, slot, evicted)

    def on_hit(self, slot, key, frames, now):
        pass

    def on_admit(self, slot, key, now):
        pass

    def select_victim(self, frames, lookahead) -> int:
        raise NotImplementedError

    def predict_victim(self, frames, lookahead=()):
        """Slot that would be reclaimed by the next fault, -1 while a slot is free"""
        if not frames.is_full:
            return -1
        return self.select_victim(frames, lookahead)

    def frame_meta(self, frame, now):
        return ""


class FifoPolicy(ReplacementPolicy):
    kind = PolicyKind.FIFO

    def __init__(self):
        self.queue = deque()

    def reset(self):
        self.queue.clear()

    def on_admit(self, slot, key, now):
        self.queue.append(slot)

    def select_victim(self, frames, lookahead):
        return self.queue[0]

    def resolve(self, reference, frames, swap, now, lookahead=()):
        result = super().resolve(reference, frames, swap, now, lookahead)
        if result.evicted is not None:
            # victim was the queue head; on_admit already re-queued the slot
            self.queue.popleft()
        return result

    def frame_meta(self, frame, now):
        return f"SEQ:{frame.loaded_at}"


class LruPolicy(ReplacementPolicy):
    kind = PolicyKind.LRU

    def __init__(self):
        self.last_access = {}

    def reset(self):
        self.last_access.clear()

    def on_hit(self, slot, key, frames, now):
        self.last_access[key] = now
        frames.touch(slot, now)

    def on_admit(self, slot, key, now):
        self.last_access[key] = now

    def select_victim(self, frames, lookahead):
        victim = None
        oldest = None
        for i, frame in enumerate(frames):
            if frame.is_empty:
                continue
            # unseen pages count as time 0 so they never block eviction
            t = self.last_access.get(frame.key, 0)
            if oldest is None or t < oldest:
                oldest = t
                victim = i
        return victim

    def frame_meta(self, frame, now):
        return f"IDLE:{now - self.last_access.get(frame.key, 0)}"


class OptimalPolicy(ReplacementPolicy):
    kind = PolicyKind.OPTIMAL
    needs_lookahead = True

    def select_victim(self, frames, lookahead):
        resident = {f.key for f in frames if not f.is_empty}
        next_use = {}
        for distance, ref in enumerate(lookahead):
            key = ref.key
            if key in resident and key not in next_use:
                next_use[key] = distance
                if len(next_use) == len(resident):
                    break

        victim = None
        farthest = -1
        for i, frame in enumerate(frames):
            if frame.is_empty:
                continue
            distance = next_use.get(frame.key, float("inf"))
            if distance > farthest:
                farthest = distance
                victim = i
        return victim

    def frame_meta(self, frame, now):
        return "OPT"


POLICIES = {
    PolicyKind.FIFO: FifoPolicy,
    PolicyKind.LRU: LruPolicy,
    PolicyKind.OPTIMAL: OptimalPolicy,
}


def make_policy(kind) -> ReplacementPolicy:
    return POLICIES[PolicyKind.parse(kind)]()


# ---------------------------------------------------------------------------
# Workload generation
# ---------------------------------------------------------------------------

MAX_RANDOM_ACCESSES = 20


def generate_workload(descriptors, rng: Optional[random.Random] = None):
    """
    Build the page reference string for a set of processes.

    Each process is scanned sequentially, then gets min(20, 2 * pages)
    uniformly random accesses; the combined list is shuffled in place.
    Pass a seeded ``random.Random`` for a reproducible trace.
    """
    if rng is None:
        rng = random.Random()
    references = []
    for desc in descriptors:
        for page in range(desc.page_count):
            references.append(PageReference(desc.id, page, desc.name))
        if desc.page_count <= 0:
            continue
        extra = min(MAX_RANDOM_ACCESSES, desc.page_count * 2)
        for _ in range(extra):
            references.append(PageReference(desc.id, rng.randrange(desc.page_count), desc.name))
    rng.shuffle(references)
    return references


def workload_length(descriptors):
    return sum(d.page_count + min(MAX_RANDOM_ACCESSES, d.page_count * 2)
               for d in descriptors if d.page_count > 0)


BELADY_SEQUENCE = [1, 2, 3, 4, 1, 2, 5, 1, 2, 3, 4, 5]


def reference_string(pages, owner_id=0, owner_name=""):
    """Fixed single-owner workload, e.g. the Belady anomaly sequence"""
    return [PageReference(owner_id, p, owner_name) for p in pages]
