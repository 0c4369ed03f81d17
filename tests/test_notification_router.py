import pytest

from hostwatch.models import AlertMessage, AlertType, DispatchResult, SendResult
from hostwatch.notification.router import NotificationRouter, chunk_message, strip_chunk_marker


def _report(line_count, line_length):
    return "\n".join(("x" * line_length) for _ in range(line_count))


# =============================================================================
# Chunking
# =============================================================================

def test_message_that_fits_is_not_marked():
    assert chunk_message("short message\nsecond line", 4000) == ["short message\nsecond line"]


def test_chunks_respect_limit_and_rejoin_exactly():
    text = _report(120, 57)
    chunks = chunk_message(text, 500)

    assert len(chunks) > 1
    assert all(len(chunk) <= 500 for chunk in chunks)
    assert "\n".join(strip_chunk_marker(c) for c in chunks) == text


def test_chunks_are_numbered():
    chunks = chunk_message(_report(30, 40), 200)
    total = len(chunks)

    for index, chunk in enumerate(chunks, 1):
        assert chunk.startswith(f"({index}/{total})\n")


def test_split_only_at_line_boundaries():
    lines = [f"line {i} " + "y" * (i % 13) for i in range(200)]
    text = "\n".join(lines)

    for chunk in chunk_message(text, 300):
        for line in strip_chunk_marker(chunk).split("\n"):
            assert line in lines


def test_empty_lines_survive_chunking():
    text = "header\n\n" + _report(50, 30) + "\n\n\nfooter\n"
    chunks = chunk_message(text, 250)

    assert "\n".join(strip_chunk_marker(c) for c in chunks) == text


def test_nine_thousand_characters_make_three_chunks():
    text = "\n".join(["z" * 99] * 89 + ["z" * 100])
    assert len(text) == 9000

    chunks = chunk_message(text, 4000)

    assert [c.split("\n", 1)[0] for c in chunks] == ["(1/3)", "(2/3)", "(3/3)"]
    assert all(len(c) <= 4000 for c in chunks)


def test_oversized_line_is_kept_whole():
    long_line = "q" * 700
    text = "intro\n" + long_line + "\noutro"
    chunks = chunk_message(text, 300)

    assert any(long_line in chunk for chunk in chunks)
    assert "\n".join(strip_chunk_marker(c) for c in chunks) == text


def test_marker_width_grows_with_chunk_count():
    text = _report(400, 20)
    chunks = chunk_message(text, 60)

    assert len(chunks) >= 100
    assert all(len(c) <= 60 for c in chunks)
    assert "\n".join(strip_chunk_marker(c) for c in chunks) == text


# =============================================================================
# Routing
# =============================================================================

def _message(body="hello"):
    return AlertMessage(AlertType.SUSPICIOUS, body)


@pytest.mark.asyncio
async def test_send_to_all_enabled_channels(fake_channel, sleep_recorder):
    chat = fake_channel("chat")
    email = fake_channel("email")
    off = fake_channel("websocket", enabled=False)
    router = NotificationRouter([chat, email, off], sleep=sleep_recorder)

    results = await router.send(_message())

    assert results == [DispatchResult("chat", True, 1), DispatchResult("email", True, 1)]
    assert chat.sent == ["hello"] and email.sent == ["hello"]
    assert off.sent == []


@pytest.mark.asyncio
async def test_no_enabled_channels_returns_empty(fake_channel):
    router = NotificationRouter([fake_channel(enabled=False)])
    assert await router.send(_message()) == []


@pytest.mark.asyncio
async def test_transient_failure_is_retried(fake_channel, sleep_recorder):
    channel = fake_channel(results=[SendResult(False, transient=True, error="429"), SendResult(True)])
    router = NotificationRouter([channel], retry_attempts=3, retry_delay=2.0, sleep=sleep_recorder)

    results = await router.send(_message())

    assert results == [DispatchResult("fake", True, 2)]
    assert sleep_recorder.calls == [2.0]


@pytest.mark.asyncio
async def test_transient_failure_gives_up_after_bound(fake_channel, sleep_recorder):
    channel = fake_channel(results=[SendResult(False, transient=True)] * 5)
    router = NotificationRouter([channel], retry_attempts=3, retry_delay=2.0, sleep=sleep_recorder)

    results = await router.send(_message())

    assert results == [DispatchResult("fake", False, 3)]
    assert len(channel.sent) == 3
    assert sleep_recorder.calls == [2.0, 2.0]


@pytest.mark.asyncio
async def test_permanent_failure_is_not_retried(fake_channel, sleep_recorder):
    channel = fake_channel(results=[SendResult(False, transient=False, error="401")])
    router = NotificationRouter([channel], sleep=sleep_recorder)

    results = await router.send(_message())

    assert results == [DispatchResult("fake", False, 1)]
    assert sleep_recorder.calls == []


@pytest.mark.asyncio
async def test_raising_channel_does_not_affect_others(fake_channel, sleep_recorder):
    broken = fake_channel("chat", error=RuntimeError("socket exploded"))
    healthy = fake_channel("email")
    router = NotificationRouter([broken, healthy], sleep=sleep_recorder)

    results = await router.send(_message())

    assert results == [DispatchResult("chat", False, 1), DispatchResult("email", True, 1)]
    assert healthy.sent == ["hello"]


@pytest.mark.asyncio
async def test_chunks_sent_in_order_with_delay_between(fake_channel, sleep_recorder):
    channel = fake_channel(max_length=4000)
    router = NotificationRouter([channel], chunk_delay=1.0, sleep=sleep_recorder)
    body = "\n".join(["z" * 99] * 89 + ["z" * 100])

    results = await router.send(AlertMessage(AlertType.SCHEDULED_REPORT, body))

    assert results == [DispatchResult("fake", True, 3)]
    assert [c.split("\n", 1)[0] for c in channel.sent] == ["(1/3)", "(2/3)", "(3/3)"]
    assert sleep_recorder.calls == [1.0, 1.0]


@pytest.mark.asyncio
async def test_each_channel_chunks_to_its_own_limit(fake_channel, sleep_recorder):
    small = fake_channel("chat", max_length=100)
    large = fake_channel("email", max_length=100000)
    router = NotificationRouter([small, large], sleep=sleep_recorder)

    await router.send(_message(_report(10, 30)))

    assert len(small.sent) > 1
    assert len(large.sent) == 1


@pytest.mark.asyncio
async def test_failed_chunk_does_not_stop_later_chunks(fake_channel, sleep_recorder):
    channel = fake_channel(max_length=100, results=[SendResult(True), SendResult(False, transient=False)])
    router = NotificationRouter([channel], sleep=sleep_recorder)

    results = await router.send(_message(_report(10, 30)))

    assert results[0].success is False
    assert len(channel.sent) == len(chunk_message(_report(10, 30), 100))


@pytest.mark.asyncio
async def test_start_and_close_channels(fake_channel):
    enabled = fake_channel("chat")
    disabled = fake_channel("email", enabled=False)
    router = NotificationRouter([enabled, disabled])

    await router.start()
    await router.close()

    assert enabled.started and not disabled.started
    assert enabled.closed and disabled.closed
