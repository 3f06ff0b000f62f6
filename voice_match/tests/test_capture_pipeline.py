import asyncio

import numpy as np
import pytest

from voice_match.audio.codec import PcmCodec
from voice_match.audio.types import AudioFormat
from voice_match.capture.pipeline import CapturePipeline
from voice_match.channel.errors import ChannelSendError


class _ListMicrophone:
    def __init__(self, frames):
        self._frames = list(frames)

    async def frames(self):
        for frame in self._frames:
            await asyncio.sleep(0)
            yield frame

    def latest_samples(self, count):
        return np.zeros(count, dtype=np.float32)

    def stop(self):
        return None


async def _wait_finished(pipeline, attempts=200):
    for _ in range(attempts):
        if not pipeline.running:
            return
        await asyncio.sleep(0.005)
    raise AssertionError("pipeline still running")


def _codec():
    return PcmCodec(AudioFormat(sample_rate_hz=16000, channels=1))


def _frames(count):
    return [np.full(4096, 0.25, dtype=np.float32) for _ in range(count)]


@pytest.mark.asyncio
async def test_pipeline_sends_every_frame_while_current():
    sent = []

    async def _send(frame):
        sent.append(frame)

    async def _fatal(exc):
        raise AssertionError("unexpected fatal")

    pipeline = CapturePipeline(_ListMicrophone(_frames(3)), _codec(), lambda: True, _send, _fatal)
    pipeline.start()
    await _wait_finished(pipeline)

    assert len(sent) == 3
    assert pipeline.frames_sent == 3
    assert {frame.mime_type for frame in sent} == {"audio/pcm;rate=16000"}


@pytest.mark.asyncio
async def test_pipeline_disconnects_when_session_is_gone_before_encoding():
    sent = []

    async def _send(frame):
        sent.append(frame)

    async def _fatal(exc):
        raise AssertionError("unexpected fatal")

    pipeline = CapturePipeline(_ListMicrophone(_frames(3)), _codec(), lambda: False, _send, _fatal)
    pipeline.start()
    await _wait_finished(pipeline)

    assert sent == []


@pytest.mark.asyncio
async def test_pipeline_rechecks_liveness_right_before_send():
    checks = []
    sent = []

    def _is_current():
        checks.append(True)
        # current when the frame arrives, torn down while it was being encoded
        return len(checks) == 1

    async def _send(frame):
        sent.append(frame)

    async def _fatal(exc):
        raise AssertionError("unexpected fatal")

    pipeline = CapturePipeline(_ListMicrophone(_frames(2)), _codec(), _is_current, _send, _fatal)
    pipeline.start()
    await _wait_finished(pipeline)

    assert sent == []
    assert len(checks) == 2


@pytest.mark.asyncio
async def test_send_failure_is_fatal_and_stops_the_loop():
    failures = []
    attempts = []

    async def _send(frame):
        attempts.append(frame)
        raise ChannelSendError("closed")

    async def _fatal(exc):
        failures.append(exc)

    pipeline = CapturePipeline(_ListMicrophone(_frames(3)), _codec(), lambda: True, _send, _fatal)
    pipeline.start()
    await _wait_finished(pipeline)

    assert len(attempts) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], ChannelSendError)
    assert pipeline.frames_sent == 0


@pytest.mark.asyncio
async def test_stop_cancels_a_waiting_pipeline():
    never = asyncio.Event()

    class _IdleMicrophone(_ListMicrophone):
        async def frames(self):
            await never.wait()
            yield np.zeros(4096, dtype=np.float32)

    async def _send(frame):
        raise AssertionError("nothing should be sent")

    async def _fatal(exc):
        raise AssertionError("unexpected fatal")

    pipeline = CapturePipeline(_IdleMicrophone([]), _codec(), lambda: True, _send, _fatal)
    pipeline.start()
    await asyncio.sleep(0)
    assert pipeline.running

    pipeline.stop()
    await asyncio.sleep(0)
    assert not pipeline.running
    pipeline.stop()
