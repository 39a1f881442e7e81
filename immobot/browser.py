# immobot/browser.py
"""The one browser tab the bot drives.

``BrowserSession`` is a context manager: it launches a persistent Chromium
profile with a randomized fingerprint, restores cookies, optionally warms up,
and on exit saves cookies and closes everything even if the body raised.
"""
import json
import os
from typing import Optional
from playwright.sync_api import sync_playwright, Error as PlaywrightError, TimeoutError as PWTimeout
from .humanizer import (
    human_delay, random_delay, random_user_agent, random_viewport,
    random_mouse_movement, human_scroll,
)
from .utils import logger, retry, NavigationError

NEUTRAL_WARMUP_URL = "https://www.google.de"

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-infobars",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
    "--lang=de-DE,de",
]

EXTRA_HEADERS = {
    "Accept-Language": "de-DE,de;q=0.9,en-US;q=0.8,en;q=0.7",
    "Upgrade-Insecure-Requests": "1",
}

STEALTH_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
window.chrome = { runtime: {}, loadTimes: function() {}, csi: function() {}, app: {} };
Object.defineProperty(navigator, 'plugins', {
  get: () => [
    { name: 'Chrome PDF Plugin', filename: 'internal-pdf-viewer' },
    { name: 'Chrome PDF Viewer', filename: 'mhjfbmdgcfjbbpaeojofohoefgiehjai' },
    { name: 'Native Client', filename: 'internal-nacl-plugin' },
  ],
});
Object.defineProperty(navigator, 'languages', { get: () => ['de-DE', 'de', 'en-US', 'en'] });
Object.defineProperty(navigator, 'platform', { get: () => 'Win32' });
Object.defineProperty(navigator, 'hardwareConcurrency', { get: () => 8 });
Object.defineProperty(navigator, 'deviceMemory', { get: () => 8 });
"""

COOKIE_CONSENT_SELECTORS = [
    "#consent-accept-button",
    '[data-testid="uc-accept-all-button"]',
    '[data-testid="consent-accept"]',
    'button[title*="akzeptieren"]',
    'button[title*="Akzeptieren"]',
    ".consent-accept",
    "#onetrust-accept-btn-handler",
]

NAV_TIMEOUT_MS = 60000
SETTLE_TIMEOUT_MS = 15000


@retry(PlaywrightError, tries=3, delay=5, backoff=2)
def fetch_page(page, url):
    page.goto(url, wait_until="domcontentloaded", timeout=NAV_TIMEOUT_MS)
    try:
        page.wait_for_load_state("networkidle", timeout=SETTLE_TIMEOUT_MS)
    except PWTimeout:
        logger.debug("Network did not settle on %s, continuing", url)


class BrowserSession:
    def __init__(self, settings):
        self.settings = settings
        self._playwright = None
        self.context = None
        self.page = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def open(self):
        logger.info("Initializing browser...")
        os.makedirs(self.settings.profile_dir, exist_ok=True)
        viewport = random_viewport()
        self._playwright = sync_playwright().start()
        try:
            self.context = self._playwright.chromium.launch_persistent_context(
                self.settings.profile_dir,
                headless=self.settings.headless,
                viewport=viewport,
                user_agent=random_user_agent(),
                locale="de-DE",
                timezone_id="Europe/Berlin",
                extra_http_headers=EXTRA_HEADERS,
                args=LAUNCH_ARGS + [f"--window-size={viewport['width']},{viewport['height']}"],
                ignore_default_args=["--enable-automation"],
            )
            self.context.add_init_script(STEALTH_SCRIPT)
            self.page = self.context.pages[0] if self.context.pages else self.context.new_page()
            self.load_cookies()
        except Exception:
            self.close()
            raise
        logger.info("Browser initialized with viewport %dx%d", viewport["width"], viewport["height"])
        if self.settings.skip_warmup:
            logger.info("Skipping warmup (SKIP_WARMUP=true)")
        else:
            self.warmup()
        return self.page

    def close(self):
        try:
            if self.context is not None:
                self.save_cookies()
                self.context.close()
                logger.info("Browser closed")
        except PlaywrightError as e:
            logger.warning("Error while closing browser: %s", e)
        finally:
            if self._playwright is not None:
                self._playwright.stop()
            self._playwright = None
            self.context = None
            self.page = None

    def load_cookies(self) -> bool:
        path = self.settings.cookies_path
        if not os.path.exists(path):
            return False
        try:
            with open(path, "r", encoding="utf-8") as fh:
                cookies = json.load(fh)
            if cookies:
                self.context.add_cookies(cookies)
                logger.debug("Cookies loaded")
                return True
        except (OSError, ValueError, PlaywrightError) as e:
            logger.error("Failed loading cookies: %s", e)
        return False

    def save_cookies(self):
        if self.context is None:
            return
        try:
            os.makedirs(os.path.dirname(os.path.abspath(self.settings.cookies_path)), exist_ok=True)
            with open(self.settings.cookies_path, "w", encoding="utf-8") as fh:
                json.dump(self.context.cookies(), fh, indent=2)
            logger.debug("Cookies saved")
        except (OSError, PlaywrightError) as e:
            logger.error("Failed to save cookies: %s", e)

    def goto(self, url: str):
        logger.debug("Navigating to %s", url)
        human_delay(1000, 3000)
        try:
            fetch_page(self.page, url)
        except PlaywrightError as e:
            raise NavigationError(f"Could not load {url}: {e}") from e
        human_delay(1000, 2000)

    def reload(self):
        try:
            self.page.reload(wait_until="domcontentloaded", timeout=NAV_TIMEOUT_MS)
        except PlaywrightError as e:
            raise NavigationError(f"Could not reload {self.page.url}: {e}") from e
        human_delay(1000, 2000)

    @property
    def url(self) -> Optional[str]:
        return self.page.url if self.page is not None else None

    def accept_cookie_consent(self) -> bool:
        for selector in COOKIE_CONSENT_SELECTORS:
            try:
                element = self.page.query_selector(selector)
                if element:
                    logger.debug("Accepting cookie consent via %s", selector)
                    human_delay(500, 1000)
                    element.click()
                    human_delay(1000, 2000)
                    return True
            except PlaywrightError:
                continue
        return False

    def warmup(self):
        """Visit a neutral page and the site's home page like a person would before searching."""
        logger.info("Performing browser warmup to avoid detection...")
        try:
            self.goto(NEUTRAL_WARMUP_URL)
            human_delay(2000, 4000)
            random_mouse_movement(self.page, 3)
            self.goto(self.settings.base_url)
            human_delay(3000, 6000)
            self.accept_cookie_consent()
            for _ in range(3):
                human_scroll(self.page, "down")
            random_mouse_movement(self.page, random_delay(3, 5))
            human_delay(2000, 4000)
            self.save_cookies()
            logger.info("Browser warmup completed")
        except (NavigationError, PlaywrightError) as e:
            logger.warning("Warmup had issues, continuing anyway: %s", e)
