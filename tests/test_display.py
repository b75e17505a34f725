"""Tests for the throttled live transcript display."""

import pytest

from querychat.conversation import ConversationState
from querychat.display import LiveTranscript


class FakeLive:
    instances = []

    def __init__(self, *args, **kwargs):
        self.kwargs = kwargs
        self.updates = []
        self.started = False
        self.stopped = False
        FakeLive.instances.append(self)

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def update(self, renderable):
        self.updates.append(renderable.markup)

    def refresh(self):
        pass


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.fixture
def fake_live(monkeypatch):
    FakeLive.instances = []
    monkeypatch.setattr("querychat.display.Live", FakeLive)
    return FakeLive


def test_throttles_small_growth(fake_live, mock_console):
    clock = FakeClock()
    state = ConversationState()
    handle = state.begin_assistant("...")
    state.update(handle, "hello")

    with LiveTranscript(mock_console, "m", profile="stable", clock=clock) as live:
        live.update(state)
        assert live.renders == 1

        state.update(handle, "hello!")
        live.update(state)
        assert live.renders == 1

        clock.now += 0.5
        live.update(state)
        assert live.renders == 2

    live_obj = fake_live.instances[0]
    assert live_obj.started and live_obj.stopped
    assert live_obj.kwargs["auto_refresh"] is False


def test_large_growth_renders_immediately(fake_live, mock_console):
    clock = FakeClock()
    state = ConversationState()
    handle = state.begin_assistant("...")

    with LiveTranscript(mock_console, "m", profile="ultra", clock=clock) as live:
        live.update(state)
        state.update(handle, "a much longer chunk of text")
        live.update(state)
        assert live.renders == 2


def test_finished_message_always_renders(fake_live, mock_console):
    clock = FakeClock()
    state = ConversationState()
    handle = state.begin_assistant("...")

    with LiveTranscript(mock_console, "gemini", clock=clock) as live:
        live.update(state)
        state.update(handle, "done")
        state.finalize(handle)
        live.update(state)
        assert live.renders == 2
    assert "### gemini (Token Tally: 0)\n\ndone" in fake_live.instances[0].updates[-1]


def test_exit_flushes_last_state(fake_live, mock_console):
    clock = FakeClock()
    state = ConversationState()
    handle = state.begin_assistant("...")
    state.update(handle, "hello")

    with LiveTranscript(mock_console, "m", profile="stable", clock=clock) as live:
        live.update(state)
        state.update(handle, "hello x")
        live.update(state)
        assert live.renders == 1
    assert live.renders == 2
    assert "hello x" in fake_live.instances[0].updates[-1]


def test_update_outside_context_is_ignored(mock_console):
    live = LiveTranscript(mock_console, "m")
    state = ConversationState()
    state.add_user("q")
    live.update(state)
    assert live.renders == 0


def test_unknown_profile_uses_smooth(mock_console):
    assert LiveTranscript(mock_console, "m", profile="warp").settings["min_chars"] == 12
