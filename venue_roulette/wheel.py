"""Wheel selection engine.

The winner is drawn uniformly over the whole candidate list. The wheel only
draws up to ``MAX_VISUAL_SLICES`` slices, so when the list is longer each
slice stands for a contiguous run of candidates and the winner's index is
bucketed proportionally onto a slice. Rendering granularity never changes
the odds.
"""
from __future__ import annotations

import logging
import math
import random
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from . import config
from .models import Venue

logger = logging.getLogger(__name__)

Scheduler = Callable[[float, Callable[[], None]], None]

IDLE = "idle"
SPINNING = "spinning"


def normalize_angle(degrees: float) -> float:
    return ((degrees % 360) + 360) % 360


def visual_slice_count(n: int, max_slices: int = config.MAX_VISUAL_SLICES) -> int:
    return min(n, max_slices)


@dataclass(frozen=True)
class SpinPlan:
    chosen_index: int
    visual_index: int
    visual_count: int
    target_angle: float
    extra_turns: int
    start_rotation: float
    final_rotation: float

    @property
    def slice_angle(self) -> float:
        return 360.0 / self.visual_count


def plan_spin(
    n: int,
    rotation: float,
    rng: random.Random,
    max_slices: int = config.MAX_VISUAL_SLICES,
) -> SpinPlan:
    if n <= 0:
        raise ValueError("Cannot spin an empty wheel")
    visual_count = visual_slice_count(n, max_slices)
    slice_angle = 360.0 / visual_count

    chosen_index = int(math.floor(rng.random() * n))
    visual_index = (chosen_index * visual_count) // n
    target = visual_index * slice_angle + rng.random() * slice_angle

    # Pointer sits at the top of the wheel (-90 degrees)
    current = normalize_angle(-rotation + 90)
    offset = normalize_angle(current - target)
    extra_turns = config.SPIN_EXTRA_TURNS_MIN + int(
        math.floor(rng.random() * config.SPIN_EXTRA_TURNS_SPAN)
    )
    final_rotation = rotation + extra_turns * 360 + offset
    return SpinPlan(
        chosen_index=chosen_index,
        visual_index=visual_index,
        visual_count=visual_count,
        target_angle=target,
        extra_turns=extra_turns,
        start_rotation=rotation,
        final_rotation=final_rotation,
    )


def slice_under_pointer(rotation: float, visual_count: int) -> int:
    slice_angle = 360.0 / visual_count
    return int(math.floor(normalize_angle(-rotation + 90) / slice_angle)) % visual_count


def index_under_pointer(rotation: float, n: int) -> int:
    """Candidate under the pointer when every candidate has its own slice."""
    return slice_under_pointer(rotation, n) % n


@dataclass(frozen=True)
class Slice:
    index: int
    start_deg: float
    end_deg: float
    color_class: int
    label: Optional[str] = None
    label_x: Optional[float] = None
    label_y: Optional[float] = None


def truncate_label(name: str, max_chars: int = config.LABEL_MAX_CHARS) -> str:
    if len(name) > max_chars:
        return name[: max_chars - 1] + "…"
    return name


def build_slices(
    venues: Sequence[Venue],
    radius: float = 500.0,
    max_slices: int = config.MAX_VISUAL_SLICES,
) -> List[Slice]:
    n = len(venues)
    if n == 0:
        return []
    visual_count = visual_slice_count(n, max_slices)
    slice_angle = 360.0 / visual_count
    labelled = n <= max_slices
    slices: List[Slice] = []
    for i in range(visual_count):
        start = i * slice_angle - 90
        end = start + slice_angle
        label = label_x = label_y = None
        if labelled:
            mid = math.radians((start + end) / 2)
            label = truncate_label(venues[i].name)
            label_x = radius * 0.65 * math.cos(mid)
            label_y = radius * 0.65 * math.sin(mid)
        slices.append(
            Slice(
                index=i,
                start_deg=start,
                end_deg=end,
                color_class=i % config.SLICE_COLOR_COUNT,
                label=label,
                label_x=label_x,
                label_y=label_y,
            )
        )
    return slices


@dataclass(frozen=True)
class SpinOutcome:
    venue: Venue
    plan: SpinPlan
    duration_seconds: float = config.SPIN_ANIMATION_SECONDS


def timer_scheduler(delay: float, callback: Callable[[], None]) -> None:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()


class SelectionEngine:
    def __init__(
        self,
        rng: Optional[random.Random] = None,
        scheduler: Scheduler = timer_scheduler,
        on_reveal: Optional[Callable[[SpinOutcome], None]] = None,
        max_slices: int = config.MAX_VISUAL_SLICES,
        reveal_seconds: float = config.SPIN_REVEAL_SECONDS,
    ) -> None:
        self.rng = rng or random.Random()
        self.scheduler = scheduler
        self.on_reveal = on_reveal
        self.max_slices = max_slices
        self.reveal_seconds = reveal_seconds
        self.candidates: List[Venue] = []
        self.accumulated_rotation = 0.0
        self.state = IDLE
        self.last_outcome: Optional[SpinOutcome] = None

    @property
    def is_spinning(self) -> bool:
        return self.state == SPINNING

    @property
    def can_spin(self) -> bool:
        return not self.is_spinning and bool(self.candidates)

    def set_candidates(self, venues: Sequence[Venue]) -> None:
        # A spin in flight keeps its precomputed result
        self.candidates = list(venues)

    def slices(self) -> List[Slice]:
        return build_slices(self.candidates, max_slices=self.max_slices)

    def spin(self) -> Optional[SpinOutcome]:
        if not self.can_spin:
            return None
        plan = plan_spin(len(self.candidates), self.accumulated_rotation, self.rng, self.max_slices)
        outcome = SpinOutcome(venue=self.candidates[plan.chosen_index], plan=plan)
        self.accumulated_rotation = plan.final_rotation
        self.state = SPINNING
        logger.info(
            "Spin: %s of %s (slice %s/%s)",
            plan.chosen_index,
            len(self.candidates),
            plan.visual_index,
            plan.visual_count,
        )
        self.scheduler(self.reveal_seconds, lambda: self._reveal(outcome))
        return outcome

    def _reveal(self, outcome: SpinOutcome) -> None:
        self.state = IDLE
        self.last_outcome = outcome
        if self.on_reveal is not None:
            self.on_reveal(outcome)
