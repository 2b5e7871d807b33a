"""
Tests for the WebSocket push channel.
"""
import asyncio
import json

from client.push_channel import PushChannel


class FakeSocket:
    """Async context manager yielding scripted frames, then closing."""

    def __init__(self, frames):
        self.frames = frames
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def __aiter__(self):
        return self._frames()

    async def _frames(self):
        for frame in self.frames:
            if self.closed:
                return
            yield frame

    async def close(self):
        self.closed = True


class ScriptedConnect:
    """Each call either raises the scripted exception or returns a FakeSocket."""

    def __init__(self, *script):
        self.script = list(script)
        self.calls = 0

    def __call__(self, url):
        self.calls += 1
        step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(step, Exception):
            raise step
        return FakeSocket(step)


def envelope(event_type, **data):
    return json.dumps({"type": event_type, "data": data})


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)
        await asyncio.sleep(0)


async def ignore(message):
    pass


def test_backoff_delays():
    channel = PushChannel("ws://test/ws", ignore)
    assert [channel.backoff_delay(n) for n in range(1, 7)] == [2, 4, 8, 16, 30, 30]


def test_unavailable_after_max_reconnect_attempts():
    connect = ScriptedConnect(OSError("connection refused"))
    sleep = SleepRecorder()
    channel = PushChannel("ws://test/ws", ignore, connect=connect, sleep=sleep)

    asyncio.run(channel.run())

    assert channel.unavailable is True
    assert channel.connected is False
    assert connect.calls == 6
    assert sleep.delays == [2, 4, 8, 16, 30]
    assert "5 attempts" in channel.last_error


def test_missing_url_disables_channel():
    channel = PushChannel("", ignore)
    asyncio.run(channel.run())
    assert channel.unavailable is True


def test_messages_are_dispatched():
    received = []
    channel = None

    async def on_message(message):
        received.append(message)
        if message["type"] == "import_completed":
            await channel.close()

    frames = [
        envelope("connection_established", message="hello"),
        "not json",
        json.dumps(["not", "an", "envelope"]),
        envelope("import_completed", sessionId="import_1"),
        envelope("import_failed", sessionId="import_2"),
    ]
    channel = PushChannel("ws://test/ws", on_message, connect=ScriptedConnect(frames), sleep=SleepRecorder())

    async def scenario():
        await channel.run()
        return await channel.wait_connected(timeout=1)

    assert asyncio.run(scenario()) is True
    assert [m["type"] for m in received] == ["connection_established", "import_completed"]
    assert channel.unavailable is False


def test_successful_connect_resets_attempts():
    received = []
    channel = None

    async def on_message(message):
        received.append(message)
        await channel.close()

    connect = ScriptedConnect(OSError("refused"), OSError("refused"), [envelope("connection_established")])
    sleep = SleepRecorder()
    channel = PushChannel("ws://test/ws", on_message, connect=connect, sleep=sleep)

    asyncio.run(channel.run())

    assert connect.calls == 3
    assert sleep.delays == [2, 4]
    assert channel.reconnect_attempts == 0
    assert len(received) == 1


def test_handler_errors_do_not_break_the_channel():
    received = []
    channel = None

    async def on_message(message):
        received.append(message["type"])
        if message["type"] == "import_started":
            raise RuntimeError("handler bug")
        await channel.close()

    frames = [envelope("import_started"), envelope("import_completed")]
    channel = PushChannel("ws://test/ws", on_message, connect=ScriptedConnect(frames), sleep=SleepRecorder())

    asyncio.run(channel.run())

    assert received == ["import_started", "import_completed"]
