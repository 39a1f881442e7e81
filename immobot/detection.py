# immobot/detection.py
"""Bot-detection checks and the human-gated resolution loop.

``detect`` looks at the page the browser is currently showing and never
raises. ``BotDetectionMonitor.handle`` blocks until a human has dealt with a
challenge: first through the CAPTCHA relay (status API), then through the
operator console, and repeats until a re-check comes back clean.
"""
import time
from dataclasses import dataclass
from typing import Optional
from .humanizer import human_delay
from .utils import logger

CAPTCHA_SELECTORS = [
    '[data-testid="captcha"]',
    ".captcha",
    'iframe[src*="captcha"]',
    'iframe[src*="recaptcha"]',
    'iframe[src*="hcaptcha"]',
    "#challenge-running",
    "#challenge-form",
    ".cf-browser-verification",
    '[class*="captcha"]',
    '[id*="captcha"]',
]

# kept narrow: listing texts routinely mention "Sicherheit" or "Roboter"
BOT_DETECTION_PHRASES = [
    "sicherheitsüberprüfung",
    "sind sie ein mensch",
    "gleich geht's weiter",
    "gleich gehts weiter",
    "kein roboter",
    "schädliche software",
    "anfrage blockiert",
    "betrügerischen aktivitäten",
    "are you human",
    "security check",
]

# challenge page titles; listing titles may mention "Sicherheitstür" or "Security-Service"
TITLE_KEYWORDS = [
    "sicherheitsüberprüfung",
    "sicherheitscheck",
    "ich bin kein roboter",
    "security check",
    "attention required",
    "just a moment",
]

WAIT_PAGE_PHRASES = ["gleich geht", "einigen sekunden"]

DETAIL_PAGE_MARKER = "/expose/"


@dataclass
class DetectionResult:
    detected: bool
    reason: Optional[str] = None

    def __bool__(self):
        return self.detected


def detect(page, skip_on_detail: bool = False) -> DetectionResult:
    """Check DOM markers, then visible text, then the title. First match wins."""
    try:
        if skip_on_detail and DETAIL_PAGE_MARKER in (page.url or ""):
            logger.debug("Detection skipped on detail page %s", page.url)
            return DetectionResult(False)

        for selector in CAPTCHA_SELECTORS:
            if page.query_selector(selector):
                return DetectionResult(True, f"DOM element found: {selector}")

        text = (page.inner_text("body") or "").lower()
        for phrase in BOT_DETECTION_PHRASES:
            if phrase in text:
                return DetectionResult(True, f'keyword found: "{phrase}"')

        title = page.title() or ""
        if any(k in title.lower() for k in TITLE_KEYWORDS):
            return DetectionResult(True, f'page title: "{title}"')

        return DetectionResult(False)
    except Exception as e:
        logger.debug("Detection check failed, assuming clean page: %s", e)
        return DetectionResult(False)


def is_wait_page(page) -> bool:
    try:
        text = (page.inner_text("body") or "").lower()
    except Exception:
        return False
    return any(p in text for p in WAIT_PAGE_PHRASES)


class ConsoleOperator:
    """Blocks on the terminal until the operator confirms the page is usable again.

    Without an interactive stdin it waits ``pause_seconds`` instead.
    """

    def __init__(self, pause_seconds: float = 30 * 60, input_func=input):
        self.pause_seconds = pause_seconds
        self._input = input_func

    def wait_for_continue(self, prompt: str):
        try:
            self._input(f"\n>>> {prompt}\n")
        except EOFError:
            logger.warning("No operator console available, pausing %d s before re-checking", self.pause_seconds)
            time.sleep(self.pause_seconds)


class BotDetectionMonitor:
    def __init__(self, relay=None, operator=None, screenshot=None, notifier=None,
                 timeout_seconds: float = 10 * 60):
        self.relay = relay
        self.operator = operator or ConsoleOperator()
        # callable(page, name) -> path; used for the relay image
        self.screenshot = screenshot
        self.notifier = notifier
        self.timeout_seconds = timeout_seconds

    def detect(self, page, skip_on_detail: bool = False) -> DetectionResult:
        return detect(page, skip_on_detail=skip_on_detail)

    def gate(self, page, skip_on_detail: bool = False, context: str = "") -> bool:
        """Run a check and, if positive, block until resolved. Returns True if a challenge was handled."""
        result = self.detect(page, skip_on_detail=skip_on_detail)
        if not result.detected:
            return False
        logger.warning("Bot detection %s: %s", f"({context})" if context else "", result.reason)
        self.handle(page, result.reason)
        return True

    def handle(self, page, reason: Optional[str] = None) -> int:
        """Block until the challenge is gone. Returns the number of resolution rounds."""
        rounds = 0
        if self.notifier is not None:
            self.notifier.notify_operator_error(
                "CAPTCHA erkannt - Bot pausiert",
                f"Grund: {reason}\nBitte im Browser lösen und im Dashboard oder in der Konsole bestätigen.",
            )
        while True:
            rounds += 1
            logger.warning("Resolving bot detection, round %d (%s)", rounds, reason)
            if not self._resolve_via_relay(page, reason):
                self._resolve_via_operator(page, reason)
            human_delay(2000, 4000)
            recheck = self.detect(page)
            if not recheck.detected:
                logger.info("Security check cleared after %d round(s)", rounds)
                return rounds
            logger.warning("Security check still active: %s", recheck.reason)
            reason = recheck.reason

    def _resolve_via_relay(self, page, reason) -> bool:
        if self.relay is None:
            return False
        image_path = None
        if self.screenshot is not None:
            try:
                image_path = self.screenshot(page, "captcha")
            except Exception as e:
                logger.warning("CAPTCHA screenshot failed: %s", e)
        try:
            self.relay.publish(True, image_path, reason)
            logger.info("Waiting up to %d s for a CAPTCHA solution from the dashboard", self.timeout_seconds)
            solution = self.relay.poll_solution(self.timeout_seconds)
        except Exception as e:
            logger.error("CAPTCHA relay unavailable: %s", e)
            return False
        finally:
            try:
                self.relay.publish(False)
            except Exception as e:
                logger.error("Could not clear CAPTCHA relay state: %s", e)
        if solution is None:
            logger.warning("No CAPTCHA solution within %d s, falling back to operator console", self.timeout_seconds)
            return False
        logger.info("CAPTCHA solution received from dashboard: %s", solution)
        return True

    def _resolve_via_operator(self, page, reason):
        if is_wait_page(page):
            prompt = ('"Gleich geht\'s weiter" page shown. Wait a few seconds or reload (F5), '
                      "then press ENTER to continue...")
        else:
            prompt = "Solve the CAPTCHA / security check in the browser window, then press ENTER to continue..."
        logger.warning("Bot paused for operator (%s)", reason)
        self.operator.wait_for_continue(prompt)
