# immobot/artifacts.py
"""PDF / screenshot evidence of listing pages."""
import os
import re
import time
from datetime import datetime
from typing import Optional
from .utils import logger

_UNSAFE = re.compile(r'[<>:"/\\|?*]')

BANNER_SCRIPT = """
(data) => {
  const banner = document.createElement('div');
  banner.id = 'immobot-metadata';
  banner.style.cssText = 'position:fixed;top:0;left:0;right:0;background:#f5f5f5;' +
    'border-bottom:2px solid #ff7300;padding:10px 20px;font:12px Arial,sans-serif;z-index:99999';
  banner.textContent = `ID: ${data.id} | Adresse: ${data.address} | Preis: ${data.price} | ` +
    `Größe: ${data.size} | Erfasst: ${data.captured}`;
  document.body.insertBefore(banner, document.body.firstChild);
}
"""
REMOVE_BANNER_SCRIPT = "() => { const b = document.getElementById('immobot-metadata'); if (b) b.remove(); }"


def sanitize_filename(value: str, max_length: int = 50) -> str:
    value = _UNSAFE.sub("", value or "")
    value = re.sub(r"\s+", "_", value)
    value = re.sub(r"_+", "_", value)
    return value[:max_length].strip("_")


def _timestamp() -> str:
    return datetime.now().strftime("%Y-%m-%dT%H-%M-%S")


class ArtifactCapture:
    def __init__(self, pdf_dir: str, screenshots_dir: str):
        self.pdf_dir = pdf_dir
        self.screenshots_dir = screenshots_dir
        os.makedirs(pdf_dir, exist_ok=True)
        os.makedirs(screenshots_dir, exist_ok=True)

    def _basename(self, listing) -> str:
        address = sanitize_filename(listing.address or "unbekannt")
        return f"{_timestamp()}_{listing.id}_{address}"

    def capture(self, page, listing) -> str:
        """A4 PDF of the current page; full-page PNG when PDF printing is unavailable.

        Raises if both fail.
        """
        try:
            return self._pdf(page, listing)
        except Exception as e:
            logger.warning("PDF for listing %s failed, trying screenshot: %s", listing.id, e)
        path = os.path.join(self.pdf_dir, self._basename(listing) + ".png")
        page.screenshot(path=path, full_page=True, timeout=30000)
        logger.info("Screenshot created: %s", path)
        return path

    def _pdf(self, page, listing) -> str:
        path = os.path.join(self.pdf_dir, self._basename(listing) + ".pdf")
        banner = {
            "id": listing.id, "address": listing.address, "price": listing.price,
            "size": listing.size, "captured": datetime.now().strftime("%d.%m.%Y %H:%M"),
        }
        try:
            page.evaluate(BANNER_SCRIPT, banner)
        except Exception as e:
            logger.debug("Could not add metadata banner: %s", e)
        try:
            page.pdf(
                path=path,
                format="A4",
                print_background=True,
                margin={"top": "20px", "right": "20px", "bottom": "20px", "left": "20px"},
            )
        finally:
            try:
                page.evaluate(REMOVE_BANNER_SCRIPT)
            except Exception:
                pass
        logger.info("PDF created: %s", path)
        return path

    def screenshot(self, page, name: str) -> Optional[str]:
        path = os.path.join(self.screenshots_dir, f"{sanitize_filename(name)}_{int(time.time() * 1000)}.png")
        page.screenshot(path=path, full_page=False, timeout=30000)
        logger.debug("Screenshot saved: %s", path)
        return path

    def try_screenshot(self, page, name: str) -> Optional[str]:
        try:
            return self.screenshot(page, name)
        except Exception as e:
            logger.warning("Screenshot %s failed: %s", name, e)
            return None

    def cleanup_old(self, days: int = 30) -> int:
        cutoff = time.time() - days * 86400
        deleted = 0
        try:
            for name in os.listdir(self.pdf_dir):
                path = os.path.join(self.pdf_dir, name)
                if os.path.isfile(path) and os.path.getmtime(path) < cutoff:
                    os.remove(path)
                    deleted += 1
        except OSError as e:
            logger.error("Error cleaning up old artifacts: %s", e)
        if deleted:
            logger.info("Cleaned up %d old artifact files", deleted)
        return deleted
