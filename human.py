import asyncio
import math
import random

CONTROL_POINT_SPREAD = 60.0
PATH_STEPS = (8, 15)
STEP_JITTER_PX = 1.0
STEP_DELAY_MS = (8.0, 16.0)
STEP_DELAY_CAP_MS = 25.0
SETTLE_PAUSE_S = (0.05, 0.25)

# Weight, minimum cost in seconds
ACTIONS = {
    "move": (0.4, 0.4),
    "scroll": (0.3, 0.6),
    "hover": (0.3, 0.5),
}

HOVER_SELECTOR = "a, button, img, h1, h2, h3, .card, .product"
HOVER_SAMPLE = 6

CHALLENGE_WIDGET_SELECTORS = (
    'iframe[src*="challenges.cloudflare.com"]',
    ".cf-turnstile",
    "#turnstile-wrapper",
    "#cf-chl-widget",
    "#challenge-stage",
    'div[id^="cf-chl-widget"]',
)
CHECKBOX_FALLBACK_XPATH = "//input[@type='checkbox']"

TYPING_DELAY_S = (0.05, 0.18)


def bezier_path(start, end, rng: random.Random):
    """Points and per-step delays (ms) for a pointer trip from start to end."""
    (x0, y0), (x3, y3) = start, end
    dx, dy = x3 - x0, y3 - y0
    c1 = (
        x0 + dx * 0.3 + rng.uniform(-CONTROL_POINT_SPREAD, CONTROL_POINT_SPREAD),
        y0 + dy * 0.3 + rng.uniform(-CONTROL_POINT_SPREAD, CONTROL_POINT_SPREAD),
    )
    c2 = (
        x0 + dx * 0.7 + rng.uniform(-CONTROL_POINT_SPREAD, CONTROL_POINT_SPREAD),
        y0 + dy * 0.7 + rng.uniform(-CONTROL_POINT_SPREAD, CONTROL_POINT_SPREAD),
    )
    steps = rng.randint(*PATH_STEPS)
    base_delay = rng.uniform(*STEP_DELAY_MS)
    path = []
    for i in range(1, steps + 1):
        t = i / steps
        u = 1 - t
        x = u ** 3 * x0 + 3 * u ** 2 * t * c1[0] + 3 * u * t ** 2 * c2[0] + t ** 3 * x3
        y = u ** 3 * y0 + 3 * u ** 2 * t * c1[1] + 3 * u * t ** 2 * c2[1] + t ** 3 * y3
        if i < steps:
            x += rng.uniform(-STEP_JITTER_PX, STEP_JITTER_PX)
            y += rng.uniform(-STEP_JITTER_PX, STEP_JITTER_PX)
        # slow at both ends, fast in the middle
        delay = min(STEP_DELAY_CAP_MS, base_delay * (1.5 - math.sin(t * math.pi)))
        path.append((x, y, delay))
    return path


class HumanSimulator:
    """Pointer, scroll and hover activity on the one live page.

    Every wait goes through ``sleep`` and is added to ``spent`` so a caller
    can tell how much of its idle budget was used.
    """

    def __init__(self, driver, logger, rng: random.Random | None = None, sleep=asyncio.sleep, viewport=(1920, 1080)):
        self.driver = driver
        self.logger = logger
        self.rng = rng or random.Random()
        self._sleep = sleep
        self.viewport = viewport
        self.position = (viewport[0] / 2, viewport[1] / 2)
        self.spent = 0.0

    async def _pause(self, seconds: float):
        if seconds <= 0:
            return
        self.spent += seconds
        await self._sleep(seconds)

    async def human_move(self, start, end):
        for x, y, delay_ms in bezier_path(start, end, self.rng):
            await self.driver.pointer_move(x, y)
            await self._pause(delay_ms / 1000)
        self.position = end
        await self._pause(self.rng.uniform(*SETTLE_PAUSE_S))

    async def move_to(self, x: float, y: float):
        await self.human_move(self.position, (x, y))

    async def click_at(self, x: float, y: float):
        await self.move_to(x, y)
        await self._pause(self.rng.uniform(0.08, 0.25))
        await self.driver.pointer_click(x, y)

    async def click_element(self, element) -> bool:
        box = await self.driver.bounding_box(element)
        if not box or box.get("width", 0) <= 0 or box.get("height", 0) <= 0:
            return False
        x = box["x"] + box["width"] * self.rng.uniform(0.3, 0.7)
        y = box["y"] + box["height"] * self.rng.uniform(0.3, 0.7)
        await self.click_at(x, y)
        return True

    async def type_like_human(self, text: str):
        for ch in text:
            await self.driver.type_text(ch)
            await self._pause(self.rng.uniform(*TYPING_DELAY_S))

    def _random_point(self):
        w, h = self.viewport
        return (self.rng.uniform(w * 0.1, w * 0.9), self.rng.uniform(h * 0.1, h * 0.9))

    async def _random_move(self):
        await self.move_to(*self._random_point())

    async def _scroll(self):
        if self.rng.random() < 0.5:
            amount = self.rng.randint(150, 450)
            chunks = self.rng.randint(2, 4)
            for _ in range(chunks):
                await self.driver.scroll(amount / chunks)
                await self._pause(self.rng.uniform(0.05, 0.15))
        else:
            # read pattern: down, linger, back up a bit
            down = self.rng.randint(300, 700)
            await self.driver.scroll(down)
            await self._pause(self.rng.uniform(0.4, 1.2))
            await self.driver.scroll(-self.rng.randint(100, down))
        await self._pause(self.rng.uniform(0.1, 0.3))

    async def _hover(self):
        elements = await self.driver.query_all_css(HOVER_SELECTOR)
        if not elements:
            await self._random_move()
            return
        sample = self.rng.sample(list(elements), min(HOVER_SAMPLE, len(elements)))
        w, h = self.viewport
        for element in sample:
            box = await self.driver.bounding_box(element)
            if not box or box["width"] <= 0 or box["height"] <= 0:
                continue
            cx = box["x"] + box["width"] / 2
            cy = box["y"] + box["height"] / 2
            if 0 <= cx <= w and 0 <= cy <= h:
                await self.move_to(cx, cy)
                await self._pause(self.rng.uniform(0.2, 0.6))
                return
        await self._random_move()

    def _pick_action(self) -> str:
        names = list(ACTIONS)
        weights = [ACTIONS[n][0] for n in names]
        return self.rng.choices(names, weights=weights)[0]

    async def simulate_human_behavior(self, budget_s: float) -> float:
        """Run 2-4 random actions within ``budget_s``. Returns seconds spent."""
        start = self.spent
        count = self.rng.randint(2, 4)
        for _ in range(count):
            action = self._pick_action()
            remaining = budget_s - (self.spent - start)
            if remaining < ACTIONS[action][1]:
                break
            try:
                if action == "move":
                    await self._random_move()
                elif action == "scroll":
                    await self._scroll()
                else:
                    await self._hover()
            except Exception as e:
                self.logger.debug(f"[HUMAN] {action} failed: {e}")
        spent = self.spent - start
        self.logger.debug(f"[HUMAN] simulated {spent:.2f}s of {budget_s:.2f}s budget")
        return spent

    async def try_click_challenge_checkbox(self) -> bool:
        """Click the challenge widget if one is on the page.

        Returns whether a click was attempted; the caller has to re-check the
        page to know if it worked.
        """
        element = None
        for selector in CHALLENGE_WIDGET_SELECTORS:
            element = await self.driver.query_css(selector)
            if element is not None:
                break
        if element is None:
            element = await self.driver.evaluate_xpath(CHECKBOX_FALLBACK_XPATH)
        if element is None:
            self.logger.info("[HUMAN] no challenge checkbox found")
            return False
        if not await self.click_element(element):
            self.logger.info("[HUMAN] challenge checkbox has no area, skipping click")
            return False
        self.logger.info("[HUMAN] clicked challenge checkbox")
        return True
