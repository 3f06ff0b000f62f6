import asyncio
import base64

import numpy as np
import pytest

from voice_match.audio.devices import MicrophoneUnavailableError, PlaybackStateError
from voice_match.channel.errors import ChannelConnectError, ChannelSendError
from voice_match.config import Config
from voice_match.models.direction import SessionStatus, TranslationDirection
from voice_match.models.messages import Sender
from voice_match.session.controller import CONNECTION_ERROR_TEXT, SessionController, StateChange

EN_RU = TranslationDirection.EN_TO_RU
RU_EN = TranslationDirection.RU_TO_EN


class FakeMicrophone:
    def __init__(self, level_samples=None):
        self.queue = asyncio.Queue()
        self.stopped = False
        self.level_samples = level_samples

    async def frames(self):
        while True:
            frame = await self.queue.get()
            if frame is None:
                return
            yield frame

    def push(self, frame=None):
        self.queue.put_nowait(frame if frame is not None else np.full(4096, 0.1, dtype=np.float32))

    def latest_samples(self, count):
        if self.level_samples is not None:
            return self.level_samples[-count:]
        return np.zeros(count, dtype=np.float32)

    def stop(self):
        if self.stopped:
            return
        self.stopped = True
        self.queue.put_nowait(None)


class FakeCaptureContext:
    def __init__(self, devices):
        self.devices = devices
        self.sample_rate_hz = 16000
        self.closed = False

    async def open_microphone(self, frame_samples):
        if self.devices.deny_microphone:
            raise MicrophoneUnavailableError("permission denied")
        microphone = FakeMicrophone(self.devices.level_samples)
        self.devices.microphones.append(microphone)
        return microphone

    def resume(self):
        return None

    def close(self):
        self.closed = True


class FakeSource:
    def __init__(self, on_ended):
        self.on_ended = on_ended
        self.stopped = False

    def stop(self):
        if self.stopped:
            raise PlaybackStateError("already stopped")
        self.stopped = True


class FakeOutputContext:
    def __init__(self):
        self.sample_rate_hz = 24000
        self.current_time = 0.0
        self.scheduled = []
        self.closed = False

    def schedule(self, buffer, start_at, on_ended):
        source = FakeSource(on_ended)
        self.scheduled.append((buffer, start_at, source))
        return source

    def resume(self):
        return None

    def close(self):
        self.closed = True


class FakeDevices:
    def __init__(self):
        self.deny_microphone = False
        self.level_samples = None
        self.microphones = []
        self.output = FakeOutputContext()
        self.captures = []

    def capture_context(self, sample_rate_hz):
        capture = FakeCaptureContext(self)
        self.captures.append(capture)
        return capture

    def output_context(self, sample_rate_hz):
        return self.output


class FakeChannel:
    def __init__(self, config, listener):
        self.config = config
        self.listener = listener
        self.sent = []
        self.closed = False
        self.fail_send = False

    async def send(self, frame):
        if self.fail_send:
            raise ChannelSendError("socket gone")
        self.sent.append(frame)

    async def close(self):
        self.closed = True


class FakeChannelFactory:
    def __init__(self):
        self.channels = []
        self.fail = False
        self.error = None
        self.gate = None

    async def __call__(self, config, listener):
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise ChannelConnectError("handshake rejected")
        if self.error is not None:
            raise self.error
        channel = FakeChannel(config, listener)
        self.channels.append(channel)
        return channel


class FakeTranslator:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    async def translate(self, text, direction):
        self.calls.append((text, direction))
        if self.error is not None:
            raise self.error
        return self.result


def _controller():
    devices = FakeDevices()
    factory = FakeChannelFactory()
    controller = SessionController(Config(), channel_factory=factory, devices=devices)
    return controller, factory, devices


async def _start_live(controller, factory, direction=EN_RU):
    await controller.start(direction)
    channel = factory.channels[-1]
    await channel.listener.on_open()
    return channel


async def _wait_until(predicate, attempts=200):
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.005)
    raise AssertionError("condition not reached")


def _audio_message(seconds=0.1, rate=24000):
    pcm = np.zeros(int(seconds * rate), dtype="<i2").tobytes()
    return {
        "serverContent": {
            "modelTurn": {
                "parts": [
                    {"inlineData": {"mimeType": f"audio/pcm;rate={rate}", "data": base64.b64encode(pcm).decode("ascii")}}
                ]
            }
        }
    }


@pytest.mark.asyncio
async def test_start_connects_and_goes_live_on_channel_open():
    controller, factory, _ = _controller()
    statuses = []
    controller.add_listener(lambda change: statuses.append(controller.status) if change is StateChange.STATUS else None)

    await controller.start(EN_RU)
    assert controller.status == SessionStatus.CONNECTING
    channel = factory.channels[0]
    assert channel.config.voice == "Kore"
    assert "ONLY output the direct Russian translation" in channel.config.system_instruction
    assert channel.config.to_setup_payload()["setup"]["generationConfig"]["responseModalities"] == ["AUDIO"]

    await channel.listener.on_open()
    assert controller.status == SessionStatus.LIVE
    assert controller.direction == EN_RU
    assert statuses[:2] == [SessionStatus.CONNECTING, SessionStatus.LIVE]

    await controller.close()


@pytest.mark.asyncio
async def test_stop_when_idle_or_twice_is_safe():
    controller, factory, devices = _controller()

    await controller.stop()
    await controller.stop()
    assert controller.status == SessionStatus.IDLE
    assert controller.volume == 0.0
    assert controller.live_transcript.is_empty

    channel = await _start_live(controller, factory)
    await channel.listener.on_message(_audio_message())
    await channel.listener.on_message({"serverContent": {"inputTranscription": {"text": "hel"}}})
    await controller.drain()
    assert len(controller.scheduler.live_units) == 1
    assert controller.live_transcript.source == "hel"

    await controller.stop()
    await controller.stop()

    assert controller.status == SessionStatus.IDLE
    assert controller.volume == 0.0
    assert controller.live_transcript.is_empty
    assert controller.scheduler.live_units == frozenset()
    assert controller.scheduler.cursor == 0.0
    assert channel.closed is True
    assert devices.microphones[0].stopped is True
    assert devices.output.scheduled[0][2].stopped is True

    await controller.close()


@pytest.mark.asyncio
async def test_same_direction_toggles_off_and_other_direction_restarts():
    controller, factory, _ = _controller()

    first = await _start_live(controller, factory, EN_RU)
    assert (controller.status, controller.direction) == (SessionStatus.LIVE, EN_RU)

    await controller.start(EN_RU)
    assert controller.status == SessionStatus.IDLE
    assert first.closed is True
    assert len(factory.channels) == 1

    second = await _start_live(controller, factory, EN_RU)
    await controller.start(RU_EN)
    assert second.closed is True
    assert controller.status == SessionStatus.CONNECTING

    third = factory.channels[-1]
    assert third.config.voice == "Zephyr"
    await third.listener.on_open()
    assert (controller.status, controller.direction) == (SessionStatus.LIVE, RU_EN)

    await controller.close()


@pytest.mark.asyncio
async def test_frames_are_sent_while_live_and_never_after_stop():
    controller, factory, devices = _controller()
    channel = await _start_live(controller, factory)
    microphone = devices.microphones[0]

    microphone.push()
    await _wait_until(lambda: len(channel.sent) == 1)
    assert channel.sent[0].mime_type == "audio/pcm;rate=16000"

    # produced just before teardown, never picked up by the pipeline
    microphone.push()
    await controller.stop()
    microphone.push()
    for _ in range(10):
        await asyncio.sleep(0)

    assert len(channel.sent) == 1
    await controller.close()


@pytest.mark.asyncio
async def test_send_failure_tears_down_silently():
    controller, factory, devices = _controller()
    channel = await _start_live(controller, factory)
    channel.fail_send = True

    devices.microphones[0].push()
    await _wait_until(lambda: controller.status == SessionStatus.IDLE)

    assert channel.closed is True
    assert controller.messages == ()
    await controller.close()


@pytest.mark.asyncio
async def test_turn_complete_finalizes_with_echo_suppressed():
    controller, factory, _ = _controller()
    channel = await _start_live(controller, factory)

    await channel.listener.on_message({"serverContent": {"inputTranscription": {"text": "hello "}}})
    await channel.listener.on_message({"serverContent": {"inputTranscription": {"text": "there"}}})
    await channel.listener.on_message(
        {
            "serverContent": {
                "outputTranscription": {"text": "Hello there, привет"},
                "turnComplete": True,
            }
        }
    )
    await controller.drain()

    assert [(m.sender, m.text) for m in controller.messages] == [
        (Sender.USER, "hello there"),
        (Sender.MODEL, "привет"),
    ]
    assert controller.live_transcript.is_empty
    await controller.close()


@pytest.mark.asyncio
async def test_audio_chunks_play_back_to_back_and_bad_chunk_is_dropped():
    controller, factory, devices = _controller()
    channel = await _start_live(controller, factory)

    await channel.listener.on_message(_audio_message(0.1))
    await channel.listener.on_message({"serverContent": {"modelTurn": {"parts": [{"inlineData": {"data": "%%%"}}]}}})
    await channel.listener.on_message(_audio_message(0.2))
    await controller.drain()

    starts = [start for _, start, _ in devices.output.scheduled]
    assert starts == pytest.approx([0.0, 0.1])
    assert controller.status == SessionStatus.LIVE
    await controller.close()


@pytest.mark.asyncio
async def test_remote_close_stops_only_its_own_session():
    controller, factory, devices = _controller()
    old = await _start_live(controller, factory, EN_RU)

    await old.listener.on_close("code=1011 reason=internal")
    assert controller.status == SessionStatus.IDLE
    assert devices.microphones[0].stopped is True

    new = await _start_live(controller, factory, RU_EN)
    await old.listener.on_message(_audio_message())
    await old.listener.on_error(RuntimeError("late"))
    await old.listener.on_close("late close")
    await controller.drain()

    assert controller.status == SessionStatus.LIVE
    assert devices.output.scheduled == []
    assert new.closed is False
    await controller.close()


@pytest.mark.asyncio
async def test_microphone_denied_refuses_start():
    controller, factory, devices = _controller()
    devices.deny_microphone = True

    await controller.start(EN_RU)

    assert controller.status == SessionStatus.IDLE
    assert factory.channels == []
    assert "permission denied" in controller.last_error
    await controller.close()


@pytest.mark.asyncio
async def test_connect_failure_reverts_to_idle_and_releases_microphone():
    controller, factory, devices = _controller()
    factory.fail = True

    await controller.start(EN_RU)

    assert controller.status == SessionStatus.IDLE
    assert devices.microphones[0].stopped is True
    assert "handshake rejected" in controller.last_error
    await controller.close()


@pytest.mark.asyncio
async def test_unexpected_factory_error_reverts_to_idle_and_releases_microphone():
    controller, factory, devices = _controller()
    factory.error = PermissionError("logs/ not writable")

    await controller.start(EN_RU)

    assert controller.status == SessionStatus.IDLE
    assert devices.microphones[0].stopped is True
    assert "not writable" in controller.last_error

    factory.error = None
    channel = await _start_live(controller, factory)
    assert controller.status == SessionStatus.LIVE
    assert channel.closed is False
    await controller.close()


@pytest.mark.asyncio
async def test_stop_while_connecting_closes_the_late_channel():
    controller, factory, devices = _controller()
    factory.gate = asyncio.Event()

    start_task = asyncio.create_task(controller.start(EN_RU))
    await _wait_until(lambda: devices.microphones)
    assert controller.status == SessionStatus.CONNECTING

    await controller.stop()
    factory.gate.set()
    await start_task

    assert controller.status == SessionStatus.IDLE
    assert factory.channels[0].closed is True
    await controller.close()


@pytest.mark.asyncio
async def test_master_switch_and_offline_gate_start():
    controller, factory, _ = _controller()
    await _start_live(controller, factory)

    await controller.set_enabled(False)
    assert controller.status == SessionStatus.IDLE
    await controller.start(EN_RU)
    assert len(factory.channels) == 1

    await controller.set_enabled(True)
    await controller.set_online(False)
    await controller.start(EN_RU)
    assert len(factory.channels) == 1
    assert controller.status == SessionStatus.IDLE
    await controller.close()


@pytest.mark.asyncio
async def test_volume_follows_microphone_and_resets_on_stop():
    controller, factory, devices = _controller()
    t = np.arange(4096) / 16000
    devices.level_samples = (0.8 * np.sin(2 * np.pi * 1000 * t)).astype(np.float32)

    await _start_live(controller, factory)
    await _wait_until(lambda: controller.volume > 0)

    await controller.stop()
    assert controller.volume == 0.0
    await controller.close()


@pytest.mark.asyncio
async def test_submit_text_records_both_sides_from_keyboard():
    controller, _, _ = _controller()
    translator = FakeTranslator(result="123")

    await controller.submit_text("  123 ", translator)

    assert translator.calls == [("123", EN_RU)]
    assert [(m.sender, m.text) for m in controller.messages] == [(Sender.USER, "123"), (Sender.MODEL, "123")]


@pytest.mark.asyncio
async def test_submit_text_failure_records_connection_error():
    controller, _, _ = _controller()
    controller.select_direction(RU_EN)

    result = await controller.submit_text("привет", FakeTranslator(error=OSError("network down")))

    assert result is None
    assert [(m.sender, m.text) for m in controller.messages] == [
        (Sender.USER, "привет"),
        (Sender.MODEL, CONNECTION_ERROR_TEXT),
    ]

    controller.clear_messages()
    assert controller.messages == ()


@pytest.mark.asyncio
async def test_close_releases_device_contexts_once():
    controller, factory, devices = _controller()
    channel = await _start_live(controller, factory)
    await channel.listener.on_message(_audio_message())
    await controller.drain()

    await controller.close()

    assert channel.closed is True
    assert devices.output.closed is True
    assert [capture.closed for capture in devices.captures] == [True]
    assert controller.scheduler is None

    await controller.close()
    assert len(devices.captures) == 1
