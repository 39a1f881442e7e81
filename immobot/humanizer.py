# immobot/humanizer.py
"""Randomized pacing and input helpers so browser actions look hand-made.

Every helper sleeps for a random amount of time after acting; nothing here
keeps state beyond the last known pointer position of a page.
"""
import random
import time
import weakref
from typing import Dict, Optional, Tuple
from .utils import logger

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:122.0) Gecko/20100101 Firefox/122.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2.1 Safari/605.1.15",
]

VIEWPORTS = [
    {"width": 1920, "height": 1080},
    {"width": 1366, "height": 768},
    {"width": 1536, "height": 864},
    {"width": 1440, "height": 900},
    {"width": 1280, "height": 720},
]

_positions = weakref.WeakKeyDictionary()


def random_user_agent() -> str:
    return random.choice(USER_AGENTS)


def random_viewport() -> Dict[str, int]:
    return dict(random.choice(VIEWPORTS))


def random_delay(min_ms: int, max_ms: int) -> int:
    """Uniform integer in ``[min_ms, max_ms]``."""
    if max_ms < min_ms:
        min_ms, max_ms = max_ms, min_ms
    return random.randint(int(min_ms), int(max_ms))


def human_delay(min_ms: int = 500, max_ms: int = 2000) -> int:
    delay = random_delay(min_ms, max_ms)
    time.sleep(delay / 1000)
    return delay


def _viewport(page) -> Dict[str, int]:
    return page.viewport_size or VIEWPORTS[-1]


def _current_position(page) -> Tuple[float, float]:
    try:
        return _positions[page]
    except (KeyError, TypeError):
        vp = _viewport(page)
        return vp["width"] / 2, vp["height"] / 2


def _remember_position(page, x, y):
    try:
        _positions[page] = (x, y)
    except TypeError:
        pass


def path_points(start, end, waypoints: int, jitter: float = 40.0):
    """Intermediate points from ``start`` to ``end`` with lateral jitter, ending exactly at ``end``."""
    (x0, y0), (x1, y1) = start, end
    points = []
    for i in range(1, waypoints + 1):
        t = i / (waypoints + 1)
        points.append((x0 + (x1 - x0) * t + random.uniform(-jitter, jitter),
                       y0 + (y1 - y0) * t + random.uniform(-jitter, jitter)))
    points.append((x1, y1))
    return points


def human_move(page, x: float, y: float):
    """Move the pointer to ``(x, y)`` through a few curved-ish intermediate points."""
    start = _current_position(page)
    for px, py in path_points(start, (x, y), waypoints=random_delay(2, 4)):
        page.mouse.move(px, py, steps=random_delay(5, 15))
        time.sleep(random_delay(20, 80) / 1000)
    _remember_position(page, x, y)


def _inner_offset(extent: float, margin: float = 5.0) -> float:
    """A point inside [0, extent], away from the edges when there is room."""
    margin = min(margin, extent / 2)
    return random.uniform(margin, extent - margin)


def human_click(page, element):
    box = element.bounding_box()
    if not box:
        element.click()
        human_delay(100, 300)
        return
    x = box["x"] + _inner_offset(box["width"])
    y = box["y"] + _inner_offset(box["height"])
    human_move(page, x, y)
    human_delay(100, 300)
    page.mouse.click(x, y)


def human_type(page, element, text: str, min_ms: int = 50, max_ms: int = 150):
    """Focus ``element`` and type ``text`` one character at a time."""
    human_click(page, element)
    human_delay(100, 300)
    for char in text:
        page.keyboard.type(char)
        time.sleep(random_delay(min_ms, max_ms) / 1000)


def human_scroll(page, direction: str = "down"):
    amount = random_delay(100, 400)
    page.mouse.wheel(0, amount if direction == "down" else -amount)
    human_delay(300, 800)


def scroll_to_bottom(page):
    for _ in range(random_delay(3, 6)):
        human_scroll(page, "down")
        human_delay(200, 500)


def scroll_into_view(page, element):
    element.scroll_into_view_if_needed()
    human_delay(500, 1000)


def simulate_reading(page, duration_ms: int = 3000):
    """Alternate scrolling and pausing until roughly ``duration_ms`` of waiting is spent."""
    spent = 0
    while spent < duration_ms:
        if random.random() > 0.5:
            human_scroll(page, "down")
        spent += human_delay(500, 1500)


def random_mouse_movement(page, moves: Optional[int] = None):
    vp = _viewport(page)
    for _ in range(moves or random_delay(2, 5)):
        x = random_delay(100, vp["width"] - 100)
        y = random_delay(100, vp["height"] - 100)
        human_move(page, x, y)
        human_delay(100, 300)


def simulate_idle_activity(page):
    """A short burst of aimless mouse movement and scrolling. Never raises."""
    try:
        random_mouse_movement(page, random_delay(2, 4))
        for _ in range(random_delay(1, 3)):
            human_scroll(page, "down" if random.random() > 0.3 else "up")
            human_delay(200, 700)
        if random.random() > 0.7:
            page.evaluate("window.scrollTo({top: 0, behavior: 'smooth'})")
            human_delay(300, 700)
    except Exception as e:
        logger.debug("Idle simulation interrupted: %s", e)
