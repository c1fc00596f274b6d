import pytest

from kaimaku.catalog.playback import InvalidTransition, PlaybackState, Player


def test_happy_path():
    player = Player()
    assert player.load("https://v/a.webm") == PlaybackState.LOADING
    assert player.dispatch("buffer") == PlaybackState.BUFFERING
    assert player.dispatch("ready") == PlaybackState.PLAYING
    assert player.dispatch("pause") == PlaybackState.PAUSED
    assert player.dispatch("play") == PlaybackState.PLAYING
    assert player.dispatch("stall") == PlaybackState.BUFFERING
    assert player.stop() == PlaybackState.IDLE
    assert player.source is None


def test_illegal_transition_raises():
    player = Player()
    with pytest.raises(InvalidTransition):
        player.dispatch("play")
    player.load("https://v/a.webm")
    with pytest.raises(InvalidTransition):
        player.dispatch("pause")


def test_cleanup_runs_on_every_exit():
    calls = []
    player = Player()
    player.load("https://v/a.webm")
    player.add_listener("progress", lambda: calls.append("a"))

    # Reload releases the previous clip's listeners
    player.load("https://v/b.webm")
    player.emit("progress")
    assert calls == []

    player.add_listener("progress", lambda: calls.append("b"))
    player.fail("network error")
    assert player.state == PlaybackState.ERROR
    assert player.error == "network error"
    assert player.listeners == {}


def test_no_listeners_without_a_source():
    with pytest.raises(RuntimeError):
        Player().add_listener("progress", lambda: None)


def test_fail_without_video_from_idle():
    player = Player()
    assert player.fail("No video available") == PlaybackState.ERROR
    assert player.load("https://v/a.webm") == PlaybackState.LOADING
    assert player.error is None
