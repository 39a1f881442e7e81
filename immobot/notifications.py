# immobot/notifications.py
"""E-mail notifications via SMTP. Best-effort: failures are logged, never raised."""
import html
import mimetypes
import os
import smtplib
from datetime import datetime
from email.message import EmailMessage
from typing import Iterable, Optional
from .utils import logger

SUBJECT_PREFIX = "[ImmoBot]"


def _listing_table(listing) -> str:
    rows = [
        ("Adresse", listing.address),
        ("Preis", listing.price),
        ("Größe", listing.size or "-"),
        ("Zimmer", listing.rooms or "-"),
        ("ID", listing.id),
    ]
    cells = "".join(
        f"<tr><td><strong>{html.escape(k)}:</strong></td><td>{html.escape(str(v))}</td></tr>" for k, v in rows
    )
    return f"<table>{cells}</table>"


def _listing_text(listing) -> str:
    return (
        f"{listing.title}\n"
        f"Adresse: {listing.address}\n"
        f"Preis: {listing.price}\n"
        f"Größe: {listing.size or '-'}\n"
        f"Zimmer: {listing.rooms or '-'}\n"
        f"Link: {listing.url}\n"
    )


class EmailNotifier:
    def __init__(self, settings, smtp_factory=None):
        self.settings = settings
        self._smtp_factory = smtp_factory

    def enabled(self) -> bool:
        return self.settings.email_enabled

    def send(self, subject: str, text: str, html_body: Optional[str] = None,
             attachments: Iterable[str] = ()) -> bool:
        if not self.enabled():
            logger.debug("E-mail disabled, not sending: %s", subject)
            return False

        msg = EmailMessage()
        msg["From"] = self.settings.email_user
        msg["To"] = self.settings.email_to
        msg["Subject"] = f"{SUBJECT_PREFIX} {subject}"
        msg.set_content(text)
        if html_body:
            msg.add_alternative(html_body, subtype="html")
        for path in attachments:
            if not path or not os.path.isfile(path):
                continue
            ctype, _ = mimetypes.guess_type(path)
            maintype, subtype = (ctype or "application/octet-stream").split("/", 1)
            with open(path, "rb") as fh:
                msg.add_attachment(fh.read(), maintype=maintype, subtype=subtype,
                                   filename=os.path.basename(path))

        try:
            factory = self._smtp_factory or (smtplib.SMTP_SSL if self.settings.email_port == 465 else smtplib.SMTP)
            with factory(self.settings.email_host, self.settings.email_port, timeout=20) as s:
                if self.settings.email_port != 465:
                    s.starttls()
                if self.settings.email_password:
                    s.login(self.settings.email_user, self.settings.email_password)
                s.send_message(msg)
            logger.info("Email sent: %s", subject)
            return True
        except Exception as e:
            logger.error("Failed to send email %r: %s", subject, e)
            return False

    def notify_applied(self, listing, result) -> bool:
        subject = f"Bewerbung gesendet: {listing.address or listing.title}"
        if self.settings.dry_run:
            subject = f"[TESTLAUF] {subject}"
        text = "Bewerbung erfolgreich gesendet.\n\n" + _listing_text(listing)
        body = (f"<h2>Bewerbung gesendet</h2><h3>{html.escape(listing.title)}</h3>"
                f"{_listing_table(listing)}<p><a href=\"{html.escape(listing.url)}\">Zum Inserat</a></p>")
        return self.send(subject, text, body, attachments=[result.pdf_path] if result.pdf_path else [])

    def notify_failed(self, listing, result) -> bool:
        subject = f"Bewerbung fehlgeschlagen: {listing.address or listing.title}"
        reason = result.error_message or "Unbekannter Fehler"
        text = f"Bewerbung fehlgeschlagen ({result.status.value}).\nGrund: {reason}\n\n" + _listing_text(listing)
        body = (f"<h2>Bewerbung fehlgeschlagen</h2><p><strong>Grund:</strong> {html.escape(reason)}</p>"
                f"{_listing_table(listing)}<p><a href=\"{html.escape(listing.url)}\">Zum Inserat</a></p>")
        return self.send(subject, text, body)

    def notify_operator_error(self, subject: str, details: str) -> bool:
        text = f"{details}\n\nZeitpunkt: {datetime.now():%d.%m.%Y %H:%M:%S}"
        return self.send(f"Fehler: {subject}", text, f"<h2>{html.escape(subject)}</h2><pre>{html.escape(details)}</pre>")

    def notify_startup(self) -> bool:
        s = self.settings
        night = f"{s.night_start_hour}:00 - {s.night_end_hour}:00" if s.night_mode_enabled else "deaktiviert"
        text = (
            "Der Bot wurde gestartet.\n\n"
            f"Suche: {s.search_url}\n"
            f"Intervall: {s.base_interval_minutes} min (±{s.random_offset_percent}%)\n"
            f"Nachtmodus: {night}\n"
            f"Testmodus: {'ja' if s.dry_run else 'nein'}\n"
        )
        return self.send("Bot gestartet", text)
