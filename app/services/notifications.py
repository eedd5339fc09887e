"""Email notification service using SMTP with a logged simulation fallback."""

import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

from app.config import settings
from app.schemas.finalize import FinalizedEvent

logger = logging.getLogger(__name__)

T = TypeVar("T")

HTML_TEMPLATE_BASE = """
<!DOCTYPE html>
<html>
<head>
    <style>
        body { font-family: 'Inter', -apple-system, sans-serif; background-color: #f8f9fa; color: #333; margin: 0; padding: 0; }
        .container { max-width: 600px; margin: 40px auto; background: #ffffff; border-radius: 12px; overflow: hidden; box-shadow: 0 4px 6px -1px rgba(0,0,0,0.1); }
        .header { background: #0d6efd; padding: 30px 40px; text-align: center; }
        .header h1 { color: #ffffff; margin: 0; font-size: 24px; letter-spacing: -0.5px; }
        .content { padding: 40px; line-height: 1.6; }
        .content p { margin: 0 0 16px 0; }
        .details { background: #f8f9fa; border-left: 4px solid #0d6efd; padding: 16px 20px; margin-bottom: 24px; border-radius: 0 8px 8px 0; }
        .button-wrap { text-align: center; margin-top: 30px; }
        .btn { display: inline-block; background: #0d6efd; color: #ffffff; text-decoration: none; padding: 14px 28px; border-radius: 8px; font-weight: 600; font-size: 14px; }
        .footer { background: #f1f3f5; padding: 20px; text-align: center; color: #6c757d; font-size: 13px; }
    </style>
</head>
<body>
    <div class="container">
        <div class="header">
            <h1>Gatherly</h1>
        </div>
        <div class="content">
            {body}
        </div>
        <div class="footer">
            <p>You received this email because you responded to an event on Gatherly.</p>
        </div>
    </div>
</body>
</html>
"""


def _send_email_sync(recipient_email: str, subject: str, html_body: str) -> bool:
    """Synchronous function to actually send or simulate the email."""
    if not settings.SMTP_USERNAME or not settings.SMTP_PASSWORD:
        logger.info(f"Simulated email to {recipient_email}: {subject}")
        logger.debug(html_body)
        return True

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"Gatherly <{settings.SMTP_USERNAME}>"
    msg["To"] = recipient_email
    msg.attach(MIMEText(html_body, "html"))

    try:
        server = smtplib.SMTP(settings.SMTP_SERVER, settings.SMTP_PORT)
        server.starttls()
        server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.send_message(msg)
        server.quit()
        logger.info(f"Email sent to {recipient_email}")
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send email to {recipient_email}: {e}")
        return False


class MailRateLimiter:
    """
    Serializes outbound mail through one worker task, keeping at least
    ``min_interval`` seconds between consecutive sends.
    """

    def __init__(self, min_interval: float) -> None:
        self.min_interval = min_interval
        self._queue: "asyncio.Queue[tuple]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._last_sent: Optional[float] = None

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Cancel the worker; callers still waiting on queued jobs get CancelledError."""
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        while not self._queue.empty():
            _, future = self._queue.get_nowait()
            future.cancel()
            self._queue.task_done()

    async def submit(self, job: Callable[[], Awaitable[T]]) -> T:
        """Queue ``job`` and wait for its own result."""
        self.start()
        future = asyncio.get_running_loop().create_future()
        await self._queue.put((job, future))
        return await future

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            job, future = await self._queue.get()
            try:
                if self._last_sent is not None:
                    wait = self.min_interval - (loop.time() - self._last_sent)
                    if wait > 0:
                        await asyncio.sleep(wait)
                result = await job()
            except asyncio.CancelledError:
                future.cancel()
                raise
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(result)
            finally:
                self._last_sent = loop.time()
                self._queue.task_done()


class Mailer:
    """Owns the rate limiter; one instance per running application."""

    def __init__(self, min_interval: Optional[float] = None) -> None:
        if min_interval is None:
            min_interval = settings.MAIL_MIN_INTERVAL_SECONDS
        self.limiter = MailRateLimiter(min_interval)

    async def send(self, recipient_email: str, subject: str, html_body: str) -> bool:
        # Run synchronous SMTP in a threadpool to avoid blocking the event loop
        return await self.limiter.submit(
            lambda: asyncio.to_thread(_send_email_sync, recipient_email, subject, html_body)
        )

    async def close(self) -> None:
        await self.limiter.stop()


def render_finalized_email(event_name: str, snapshot: FinalizedEvent, share_url: str) -> str:
    lines = []
    if snapshot.finalized_date:
        lines.append(f"<p><strong>Date:</strong> {escape(snapshot.finalized_date)}</p>")
    if snapshot.finalized_place:
        lines.append(f"<p><strong>Place:</strong> {escape(snapshot.finalized_place)}</p>")
    for sel in snapshot.custom_field_selections.values():
        value = sel.selection
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value)
        lines.append(f"<p><strong>{escape(sel.field_title)}:</strong> {escape(str(value))}</p>")

    body = f"""
    <h2>Hello,</h2>
    <p>The organizer has confirmed the details for <strong>{escape(event_name)}</strong>.</p>
    <div class="details">{''.join(lines) or '<p>No further details were set.</p>'}</div>
    <div class="button-wrap">
        <a href="{share_url}" class="btn">View Event</a>
    </div>
    """
    return HTML_TEMPLATE_BASE.replace("{body}", body)


async def notify_event_finalized(
    mailer: Mailer,
    event_name: str,
    event_uuid: str,
    snapshot: FinalizedEvent,
    recipients: Iterable[str],
) -> int:
    """Email every respondent the confirmed outcome. Returns how many were sent."""
    subject = f"{event_name} is confirmed"
    share_url = f"{settings.APP_ORIGIN}/events/{event_uuid}/finalized"
    html = render_finalized_email(event_name, snapshot, share_url)

    sent = 0
    for email in dict.fromkeys(recipients):
        if await mailer.send(email, subject, html):
            sent += 1
    logger.info(f"Finalization notice for event {event_uuid} sent to {sent} recipient(s)")
    return sent
