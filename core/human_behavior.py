"""
Human Behavior Simulator - bounded random timing for page interactions.

The generators are pure (given the injected random source) and return plain
numbers or point lists. The async drivers consume them and touch the page.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import List, Tuple, Optional, Callable, Awaitable

from playwright.async_api import Page

Point = Tuple[float, float]


@dataclass
class BehaviorConfig:
    """Timing bounds, all in milliseconds unless noted."""
    min_delay_ms: int = 90_000
    max_delay_ms: int = 150_000

    min_keystroke_ms: int = 40
    max_keystroke_ms: int = 120
    typo_pause_probability: float = 0.1
    min_typo_pause_ms: int = 200
    max_typo_pause_ms: int = 500

    hesitation_probability: float = 0.3
    min_hesitation_ms: int = 200
    max_hesitation_ms: int = 1000

    min_read_ms_per_char: int = 40
    max_read_ms_per_char: int = 60
    min_reading_ms: int = 1000
    max_reading_ms: int = 5000

    min_scrolls: int = 2
    max_scrolls: int = 4
    min_scroll_px: int = 200
    max_scroll_px: int = 500
    scroll_back_probability: float = 0.5
    scroll_back_px: int = 150

    mouse_steps: int = 10
    min_navigation_pause_ms: int = 1500
    max_navigation_pause_ms: int = 2500


class HumanBehaviorSimulator:
    """
    Human-like pacing for LinkedIn interactions.

    Args:
        config: timing bounds
        rng: random source (seed it in tests)
        sleep: awaitable sleep taking seconds
    """

    def __init__(
        self,
        config: Optional[BehaviorConfig] = None,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or BehaviorConfig()
        self.rng = rng or random.Random()
        self._sleep = sleep

    # === Generators ===

    def request_spacing_ms(self) -> int:
        return self.rng.randint(self.config.min_delay_ms, self.config.max_delay_ms)

    def hesitation_ms(self) -> int:
        if self.rng.random() >= self.config.hesitation_probability:
            return 0
        return self.rng.randint(self.config.min_hesitation_ms, self.config.max_hesitation_ms)

    def reading_time_ms(self, text_length: int) -> int:
        per_char = self.rng.uniform(self.config.min_read_ms_per_char, self.config.max_read_ms_per_char)
        estimate = int(max(text_length, 0) * per_char)
        return max(self.config.min_reading_ms, min(estimate, self.config.max_reading_ms))

    def keystroke_delays(self, text: str) -> List[int]:
        """One delay per character; some characters carry an extra pause."""
        delays = []
        for _ in text:
            delay = self.rng.randint(self.config.min_keystroke_ms, self.config.max_keystroke_ms)
            if self.rng.random() < self.config.typo_pause_probability:
                delay += self.rng.randint(self.config.min_typo_pause_ms, self.config.max_typo_pause_ms)
            delays.append(delay)
        return delays

    def mouse_path(self, start: Point, end: Point, steps: Optional[int] = None) -> List[Point]:
        """
        Quadratic Bezier from start to end with a jittered control point.

        The first point is start and the last is end.
        """
        steps = max(steps or self.config.mouse_steps, 1)
        (x0, y0), (x2, y2) = start, end
        spread = max(abs(x2 - x0), abs(y2 - y0), 50) * 0.3
        cx = (x0 + x2) / 2 + self.rng.uniform(-spread, spread)
        cy = (y0 + y2) / 2 + self.rng.uniform(-spread, spread)

        points = []
        for i in range(steps + 1):
            t = i / steps
            x = (1 - t) ** 2 * x0 + 2 * (1 - t) * t * cx + t ** 2 * x2
            y = (1 - t) ** 2 * y0 + 2 * (1 - t) * t * cy + t ** 2 * y2
            points.append((x, y))
        return points

    def scroll_plan(self) -> List[int]:
        """Vertical wheel deltas; negative means scrolling back up."""
        plan = [
            self.rng.randint(self.config.min_scroll_px, self.config.max_scroll_px)
            for _ in range(self.rng.randint(self.config.min_scrolls, self.config.max_scrolls))
        ]
        if self.rng.random() < self.config.scroll_back_probability:
            plan.append(-self.config.scroll_back_px)
        return plan

    def navigation_pause_ms(self) -> int:
        return self.rng.randint(self.config.min_navigation_pause_ms, self.config.max_navigation_pause_ms)

    # === Drivers ===

    async def pause(self, ms: int):
        if ms > 0:
            await self._sleep(ms / 1000)

    async def hesitate(self):
        await self.pause(self.hesitation_ms())

    async def simulate_reading(self, text_length: int):
        await self.pause(self.reading_time_ms(text_length))

    async def navigation_pause(self):
        await self.pause(self.navigation_pause_ms())

    async def space_requests(self):
        """Wait out the pacing window before the next profile."""
        await self.pause(self.request_spacing_ms())

    async def type_text(self, page: Page, selector: str, text: str):
        """Focus the field, then type one character at a time."""
        await page.focus(selector)
        await self.hesitate()
        for char, delay in zip(text, self.keystroke_delays(text)):
            await page.keyboard.type(char)
            await self.pause(delay)

    async def move_mouse(self, page: Page, end: Optional[Point] = None, start: Point = (0, 0)):
        if end is None:
            end = (self.rng.randint(100, 800), self.rng.randint(100, 600))
        for x, y in self.mouse_path(start, end)[1:]:
            await page.mouse.move(x, y)
            await self.pause(self.rng.randint(5, 25))

    async def scroll(self, page: Page):
        for delta in self.scroll_plan():
            await page.mouse.wheel(0, delta)
            await self.pause(self.rng.randint(300, 800))
