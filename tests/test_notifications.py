import asyncio
from datetime import datetime, timezone

import pytest

from app.schemas.finalize import CustomFieldSelection, FinalizedEvent
from app.services.notifications import (
    Mailer,
    MailRateLimiter,
    notify_event_finalized,
    render_finalized_email,
)

SNAPSHOT = FinalizedEvent(
    finalized_date="2025-01-01T10:00:00Z",
    finalized_place="Park <North gate>",
    custom_field_selections={
        "food": CustomFieldSelection(
            field_id="food", field_type="checkbox", field_title="Food", selection=["Fruit", "Cake"]
        ),
    },
    finalized_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
    finalized_by=1,
)


@pytest.mark.asyncio
async def test_rate_limiter_spaces_jobs_and_returns_each_result():
    limiter = MailRateLimiter(min_interval=0.05)
    loop = asyncio.get_running_loop()
    started = []

    async def job(i):
        started.append(loop.time())
        return i * 10

    results = await asyncio.gather(*(limiter.submit(lambda i=i: job(i)) for i in range(3)))
    await limiter.stop()

    assert results == [0, 10, 20]
    gaps = [b - a for a, b in zip(started, started[1:])]
    assert all(gap >= 0.04 for gap in gaps), gaps


@pytest.mark.asyncio
async def test_rate_limiter_propagates_job_errors():
    limiter = MailRateLimiter(min_interval=0)

    async def boom():
        raise RuntimeError("smtp down")

    async def fine():
        return "ok"

    with pytest.raises(RuntimeError, match="smtp down"):
        await limiter.submit(boom)
    # the worker survives a failed job
    assert await limiter.submit(fine) == "ok"
    await limiter.stop()


@pytest.mark.asyncio
async def test_mailer_simulates_without_credentials():
    mailer = Mailer(min_interval=0)
    try:
        assert await mailer.send("guest@example.com", "Hello", "<p>Hi</p>") is True
    finally:
        await mailer.close()


def test_render_finalized_email_escapes_values():
    html = render_finalized_email("Picnic & Games", SNAPSHOT, "http://app/events/abc/finalized")
    assert "Picnic &amp; Games" in html
    assert "Park &lt;North gate&gt;" in html
    assert "Fruit, Cake" in html
    assert 'href="http://app/events/abc/finalized"' in html


@pytest.mark.asyncio
async def test_notify_event_finalized_sends_once_per_recipient(mailer):
    sent = await notify_event_finalized(
        mailer, "Picnic", "abc", SNAPSHOT, ["a@example.com", "b@example.com", "a@example.com"]
    )
    assert sent == 2
    assert [m[0] for m in mailer.sent] == ["a@example.com", "b@example.com"]
    assert mailer.sent[0][1] == "Picnic is confirmed"


@pytest.mark.asyncio
async def test_stop_cancels_jobs_still_waiting():
    limiter = MailRateLimiter(min_interval=10)

    async def job():
        return "sent"

    first = asyncio.create_task(limiter.submit(job))
    waiting = [asyncio.create_task(limiter.submit(job)) for _ in range(2)]
    assert await first == "sent"

    await limiter.stop()
    for task in waiting:
        with pytest.raises(asyncio.CancelledError):
            await asyncio.wait_for(task, timeout=1)
