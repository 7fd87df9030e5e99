"""
Human-like page interaction for challenge pages.

Cloudflare interstitials often only render their Turnstile iframe after
seeing user activity. The simulator produces that activity:
- Mouse trajectory along Bezier curves with ease-in/ease-out timing
- Keyboard focus events
- Smooth scrolling down and back up
- Window focus/blur and visibilitychange events
"""

import asyncio
import math
import random
from dataclasses import dataclass

from scrapecore.crawler.page import PageAutomation
from scrapecore.utils.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# Configuration
# =============================================================================


@dataclass
class MouseConfig:
    """Configuration for mouse movement behavior."""

    # Speed parameters
    base_speed: float = 800.0  # pixels per second
    speed_variance: float = 0.3  # ±30%

    # Bezier curve parameters
    control_point_variance: float = 80.0  # pixels
    num_control_points: int = 2

    # Acceleration/deceleration
    acceleration_ratio: float = 0.2
    deceleration_ratio: float = 0.3

    # Steps
    min_steps: int = 10
    max_steps: int = 50


@dataclass
class ChallengeInteractionConfig:
    """Configuration for the challenge-page interaction sequence."""

    gestures: int = 5
    key_pause_seconds: float = 0.5
    scroll_settle_seconds: float = 2.0
    final_settle_seconds: float = 3.0
    # Multiplies every sleep; 0 disables waiting (tests)
    time_scale: float = 1.0


@dataclass
class Point:
    """2D point."""

    x: float
    y: float

    def distance_to(self, other: "Point") -> float:
        """Calculate Euclidean distance to another point."""
        return math.hypot(self.x - other.x, self.y - other.y)


# =============================================================================
# Mouse trajectory
# =============================================================================


class MouseTrajectory:
    """Generates human-like mouse movement trajectories.

    Uses Bezier curves with natural acceleration/deceleration patterns.
    """

    def __init__(self, config: MouseConfig | None = None):
        self._config = config or MouseConfig()

    def generate_path(
        self,
        start: tuple[float, float],
        end: tuple[float, float],
    ) -> list[tuple[float, float, float]]:
        """Generate a human-like mouse movement path.

        Args:
            start: Starting (x, y) coordinates.
            end: Ending (x, y) coordinates.

        Returns:
            List of (x, y, delay_ms) tuples ending exactly at ``end``.
        """
        start_pt = Point(*start)
        end_pt = Point(*end)

        distance = start_pt.distance_to(end_pt)
        if distance < 1:
            return [(end[0], end[1], 0.0)]

        num_steps = max(self._config.min_steps, min(self._config.max_steps, int(distance / 20)))
        control_points = self._generate_control_points(start_pt, end_pt)

        speed = self._config.base_speed * (
            1 + random.uniform(-self._config.speed_variance, self._config.speed_variance)
        )
        base_delay = (distance / num_steps) / speed * 1000  # ms

        path: list[tuple[float, float, float]] = []
        for i in range(num_steps + 1):
            t = i / num_steps
            x, y = self._bezier_point(t, control_points)
            path.append((x, y, base_delay / self._get_speed_factor(t)))

        return path

    def _generate_control_points(self, start: Point, end: Point) -> list[Point]:
        points = [start]
        angle = math.atan2(end.y - start.y, end.x - start.x) + math.pi / 2

        for i in range(self._config.num_control_points):
            t = (i + 1) / (self._config.num_control_points + 1)
            base_x = start.x + t * (end.x - start.x)
            base_y = start.y + t * (end.y - start.y)

            # Offset perpendicular to the straight line
            offset = random.uniform(
                -self._config.control_point_variance, self._config.control_point_variance
            )
            points.append(Point(base_x + offset * math.cos(angle), base_y + offset * math.sin(angle)))

        points.append(end)
        return points

    @staticmethod
    def _bezier_point(t: float, control_points: list[Point]) -> tuple[float, float]:
        """Point on the curve at t (de Casteljau)."""
        points = [(p.x, p.y) for p in control_points]
        while len(points) > 1:
            points = [
                ((1 - t) * a[0] + t * b[0], (1 - t) * a[1] + t * b[1])
                for a, b in zip(points, points[1:])
            ]
        return points[0]

    def _get_speed_factor(self, t: float) -> float:
        """Speed multiplier: slow start, constant middle, slow end."""
        accel = self._config.acceleration_ratio
        decel = self._config.deceleration_ratio

        if t < accel:
            return 0.3 + 0.7 * (t / accel) ** 0.5
        if t > 1 - decel:
            return 1.0 - 0.7 * ((t - (1 - decel)) / decel) ** 2
        return 1.0


# =============================================================================
# Page interaction scripts
# =============================================================================

_VIEWPORT_JS = "() => ({ width: window.innerWidth, height: window.innerHeight })"

_KEYBOARD_JS = """
() => {
    if (document.body) { document.body.focus(); }
    ['keydown', 'keyup'].forEach(type => {
        document.dispatchEvent(new KeyboardEvent(type, { key: 'Tab' }));
    });
}
"""

_SCROLL_JS = """
() => {
    window.scrollTo({ top: 200, behavior: 'smooth' });
    setTimeout(() => window.scrollTo({ top: 50, behavior: 'smooth' }), 800);
    setTimeout(() => window.scrollTo({ top: 0, behavior: 'smooth' }), 1600);
}
"""

_FOCUS_JS = """
() => {
    window.dispatchEvent(new Event('focus'));
    setTimeout(() => window.dispatchEvent(new Event('blur')), 200);
    setTimeout(() => window.dispatchEvent(new Event('focus')), 400);
    document.dispatchEvent(new Event('visibilitychange'));
}
"""


class HumanBehaviorSimulator:
    """Drives a PageAutomation with human-looking activity."""

    def __init__(
        self,
        mouse: MouseConfig | None = None,
        interaction: ChallengeInteractionConfig | None = None,
    ):
        self._mouse = MouseTrajectory(mouse)
        self._interaction = interaction or ChallengeInteractionConfig()

    async def _pause(self, seconds: float) -> None:
        scaled = seconds * self._interaction.time_scale
        if scaled > 0:
            await asyncio.sleep(scaled)

    async def move_mouse(
        self,
        page: PageAutomation,
        start: tuple[float, float],
        end: tuple[float, float],
    ) -> None:
        """Move the mouse from start to end along a generated path."""
        for x, y, delay_ms in self._mouse.generate_path(start, end):
            await page.mouse_move(x, y)
            await self._pause(delay_ms / 1000)

    async def simulate_challenge_interaction(self, page: PageAutomation) -> bool:
        """Run the full interaction sequence on a challenge page.

        Args:
            page: Page showing the challenge.

        Returns:
            True if the sequence completed, False if the page rejected a step.
        """
        try:
            viewport = await page.evaluate_script(_VIEWPORT_JS) or {}
            width = int(viewport.get("width", 1920))
            height = int(viewport.get("height", 1080))

            for i in range(self._interaction.gestures):
                start_x = 100 + i * 50 + (i % 3) * 100
                start_y = 100 + i * 30 + (i % 2) * 150
                end_x = start_x + 50 + i * 20
                end_y = start_y + 30 + i * 25
                if end_x >= width or end_y >= height:
                    continue
                await page.mouse_move(start_x, start_y)
                await self._pause(0.2 + i * 0.1)
                await self.move_mouse(page, (start_x, start_y), (end_x, end_y))
                await self._pause(0.3 + i * 0.1)

            await page.evaluate_script(_KEYBOARD_JS)
            await self._pause(self._interaction.key_pause_seconds)

            await page.evaluate_script(_SCROLL_JS)
            await self._pause(self._interaction.scroll_settle_seconds)

            await page.evaluate_script(_FOCUS_JS)
            await self._pause(self._interaction.final_settle_seconds)

        except Exception as e:
            logger.warning("Human behavior simulation failed", error=str(e))
            return False

        logger.debug("Human behavior simulation completed")
        return True
