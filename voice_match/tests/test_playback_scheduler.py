import numpy as np
import pytest

from voice_match.audio.devices import PlaybackStateError
from voice_match.audio.types import PlaybackBuffer
from voice_match.playback import PlaybackScheduler


class _Source:
    def __init__(self, started=True):
        self.started = started
        self.stopped = False

    def stop(self):
        if not self.started:
            raise PlaybackStateError("cannot stop a source that has not started")
        self.stopped = True


class _Output:
    def __init__(self):
        self.sample_rate_hz = 24000
        self.current_time = 0.0
        self.scheduled = []
        self.next_started = True

    def schedule(self, buffer, start_at, on_ended):
        source = _Source(self.next_started)
        self.scheduled.append((start_at, on_ended, source))
        return source

    def resume(self):
        return None


def _buffer(seconds, rate=24000):
    return PlaybackBuffer(samples=np.zeros((int(seconds * rate), 1), dtype=np.float32), sample_rate_hz=rate)


def test_units_are_scheduled_back_to_back_despite_arrival_jitter():
    output = _Output()
    scheduler = PlaybackScheduler(output)
    arrivals = [(0.00, 0.5), (0.05, 0.25), (0.30, 1.0), (0.31, 0.125)]

    units = []
    for clock, duration in arrivals:
        output.current_time = clock
        units.append(scheduler.enqueue(_buffer(duration)))

    for previous, unit in zip(units, units[1:]):
        assert unit.start_at >= previous.end_at
        assert unit.start_at == pytest.approx(previous.end_at)
    assert scheduler.cursor == pytest.approx(units[-1].end_at)


def test_unit_starts_at_output_clock_once_the_queue_has_drained():
    output = _Output()
    scheduler = PlaybackScheduler(output)
    scheduler.enqueue(_buffer(0.5))

    output.current_time = 2.0
    unit = scheduler.enqueue(_buffer(0.5))

    assert unit.start_at == 2.0
    assert scheduler.cursor == pytest.approx(2.5)


def test_ended_notification_releases_the_unit():
    output = _Output()
    scheduler = PlaybackScheduler(output)
    first = scheduler.enqueue(_buffer(0.1))
    second = scheduler.enqueue(_buffer(0.1))

    output.scheduled[0][1]()

    assert scheduler.live_units == frozenset({second})
    assert first not in scheduler.live_units


def test_force_stop_all_tolerates_unstarted_units_and_rewinds():
    output = _Output()
    scheduler = PlaybackScheduler(output)
    scheduler.enqueue(_buffer(0.2))
    output.next_started = False
    scheduler.enqueue(_buffer(0.2))

    stopped = scheduler.force_stop_all()

    assert stopped == 2
    assert scheduler.live_units == frozenset()
    assert scheduler.cursor == 0.0
    assert output.scheduled[0][2].stopped is True

    unit = scheduler.enqueue(_buffer(0.1))
    assert unit.start_at == 0.0
