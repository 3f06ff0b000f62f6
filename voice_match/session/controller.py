"""Session controller: the IDLE -> CONNECTING -> LIVE -> IDLE state machine.

The controller owns at most one :class:`Session`. Everything that can resume
later (channel callbacks, capture frames, meter ticks, queued inbound events)
captures the session it was created for and does nothing once that session is
no longer current.

Inbound channel messages are flattened into :class:`ChannelEvent` values and
published on an :class:`EventBus` with a single worker, so transcript appends
and playback enqueues run one at a time in arrival order.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..audio.codec import PcmCodec, sample_rate_from_mime
from ..audio.devices import (
    AudioDeviceUnavailableError,
    AudioDevices,
    CaptureContext,
    OutputContext,
    SoundDeviceAudio,
)
from ..audio.meter import VolumeMeter
from ..audio.types import AudioDecodingError, AudioFormat, EncodedFrame
from ..capture.pipeline import CapturePipeline
from ..channel.config import ChannelConfig
from ..channel.errors import ChannelConnectError, ChannelSendError
from ..channel.live_channel import ChannelFactory, live_channel_factory
from ..channel.text_translator import TextTranslator
from ..config import Config, ConfigError
from ..core.event_bus import EventBus, HandlerConfig
from ..core.queues import OverflowPolicy
from ..models.channel_events import (
    AudioChunkEvent,
    TranscriptDeltaEvent,
    TurnCompleteEvent,
    events_from_server_message,
)
from ..models.direction import SessionStatus, TranslationDirection
from ..models.messages import LiveTranscript, MessageRecord, Sender
from ..playback.scheduler import PlaybackScheduler
from ..transcription.merger import TranscriptionMerger
from ..transcription.message_log import MessageLog
from .session import InboundEvent, Session

logger = logging.getLogger(__name__)

CONNECTION_ERROR_TEXT = "Connection error. Check VPN."


class StateChange(str, Enum):
    STATUS = "status"
    VOLUME = "volume"
    LIVE_TRANSCRIPT = "live_transcript"
    MESSAGES = "messages"


StateListener = Callable[[StateChange], None]


class _SessionChannelListener:
    """Routes one channel's callbacks to the controller, bound to one session."""

    def __init__(self, controller: "SessionController", session: Session):
        self.controller = controller
        self.session = session

    async def on_open(self) -> None:
        await self.controller._on_channel_open(self.session)

    async def on_message(self, payload: Dict[str, Any]) -> None:
        await self.controller._on_channel_message(self.session, payload)

    async def on_error(self, cause: BaseException) -> None:
        logger.warning("%s: channel error: %s", self.session.label, cause)
        await self.controller._teardown(self.session, "channel error")

    async def on_close(self, reason: str) -> None:
        logger.info("%s: channel closed: %s", self.session.label, reason)
        await self.controller._teardown(self.session, "channel closed")


class SessionController:
    def __init__(
        self,
        config: Config,
        channel_factory: Optional[ChannelFactory] = None,
        devices: Optional[AudioDevices] = None,
        codec: Optional[PcmCodec] = None,
    ):
        self.config = config
        self.channel_factory = channel_factory or live_channel_factory(config.provider, config.system)
        self.devices = devices or SoundDeviceAudio(capture_queue_max=config.buffering.capture_queue_max)
        self.codec = codec or PcmCodec(AudioFormat(sample_rate_hz=config.audio.capture_sample_rate, channels=1))

        self.log = MessageLog()
        self.merger = TranscriptionMerger(self.log)
        self.log.subscribe(lambda record: self._notify(StateChange.MESSAGES))
        self.merger.subscribe(lambda live: self._notify(StateChange.LIVE_TRANSCRIPT))

        self._session: Optional[Session] = None
        self._generation = 0
        self._direction = TranslationDirection.EN_TO_RU
        self._volume = 0.0
        self._online = True
        self._enabled = True
        self._last_error: Optional[str] = None

        self._capture_context: Optional[CaptureContext] = None
        self._output_context: Optional[OutputContext] = None
        self._scheduler: Optional[PlaybackScheduler] = None

        self._bus = EventBus("channel_inbound")
        self._dispatch_ready = False
        self._listeners: List[StateListener] = []

    # ------------------------------------------------------------------
    # Read-only surface
    # ------------------------------------------------------------------
    @property
    def status(self) -> SessionStatus:
        session = self._session
        return session.status if session is not None else SessionStatus.IDLE

    @property
    def direction(self) -> TranslationDirection:
        return self._direction

    @property
    def volume(self) -> float:
        return self._volume

    @property
    def live_transcript(self) -> LiveTranscript:
        return self.merger.live

    @property
    def messages(self) -> Tuple[MessageRecord, ...]:
        return self.log.records

    @property
    def online(self) -> bool:
        return self._online

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def scheduler(self) -> Optional[PlaybackScheduler]:
        return self._scheduler

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    async def start(self, direction: TranslationDirection) -> None:
        if not self._online:
            logger.info("Start ignored: offline")
            return
        if not self._enabled:
            logger.info("Start ignored: translation disabled")
            return

        current = self._session
        if current is not None:
            same_direction = current.direction is direction
            await self._teardown(current, "restart" if not same_direction else "toggled off")
            if same_direction:
                return

        self._generation += 1
        session = Session(generation=self._generation, direction=direction)
        self._session = session
        self._direction = direction
        self._last_error = None
        self.merger.reset()
        self._notify(StateChange.STATUS)
        logger.info("%s: connecting", session.label)

        await self._ensure_dispatch()
        capture = self._acquire_capture_context()
        output = self._acquire_output_context()

        try:
            capture.resume()
            output.resume()
            microphone = await capture.open_microphone(self.config.audio.frame_samples)
        except AudioDeviceUnavailableError as exc:
            logger.warning("%s: audio device unavailable: %s", session.label, exc)
            self._last_error = str(exc)
            await self._teardown(session, "audio device unavailable")
            return

        if not self._is_current(session):
            microphone.stop()
            return
        session.microphone = microphone
        session.meter = VolumeMeter(
            microphone,
            lambda level: self._on_level(session, level),
            fps=self.config.audio.meter_fps,
            fft_size=self.config.audio.meter_fft_size,
        )
        session.meter.start()

        try:
            channel_config = ChannelConfig.for_direction(direction, self.config.provider)
            channel = await self.channel_factory(channel_config, _SessionChannelListener(self, session))
        except (ChannelConnectError, ConfigError) as exc:
            logger.warning("%s: failed to open channel: %s", session.label, exc)
            self._last_error = str(exc)
            await self._teardown(session, "connect failed")
            return
        except Exception as exc:
            logger.exception("%s: unexpected error while opening channel", session.label)
            self._last_error = str(exc)
            await self._teardown(session, "connect failed")
            return

        if not self._is_current(session):
            logger.debug("%s: stopped while connecting, closing late channel", session.label)
            await self._close_channel(session, channel)
            return
        session.channel = channel
        self._maybe_start_capture(session)

    async def stop(self) -> None:
        """Tear down the active session, if any. Never raises."""
        session = self._session
        if session is None:
            self._reset_playback_and_transcript()
            self._set_volume(0.0)
            return
        await self._teardown(session, "stopped")

    async def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        if not enabled and self._session is not None:
            await self._teardown(self._session, "translation disabled")
        self._notify(StateChange.STATUS)

    async def set_online(self, online: bool) -> None:
        self._online = online
        self._notify(StateChange.STATUS)

    def select_direction(self, direction: TranslationDirection) -> None:
        """Change the direction used by the text path without touching the live session."""
        if self._session is None:
            self._direction = direction

    async def submit_text(self, text: str, translator: TextTranslator) -> Optional[MessageRecord]:
        """Record typed text and its one-shot translation into the active direction."""
        text = text.strip()
        if not text:
            return None
        direction = self._direction
        self.log.add(Sender.USER, text, from_keyboard=True)
        try:
            translation = await translator.translate(text, direction)
        except Exception:
            logger.exception("Text translation into %s failed", direction.target_language)
            self.log.add(Sender.MODEL, CONNECTION_ERROR_TEXT)
            return None
        return self.log.add(Sender.MODEL, translation, from_keyboard=True)

    def clear_messages(self) -> None:
        self.log.clear()
        self._notify(StateChange.MESSAGES)

    async def close(self) -> None:
        """Stop the session, release the sound devices and the dispatch worker."""
        await self.stop()
        capture, self._capture_context = self._capture_context, None
        output, self._output_context = self._output_context, None
        self._scheduler = None
        if capture is not None:
            capture.close()
        if output is not None:
            output.close()
        if self._dispatch_ready:
            await self._bus.shutdown()
            self._dispatch_ready = False

    async def drain(self) -> None:
        """Wait until every inbound event published so far has been applied."""
        if self._dispatch_ready:
            await self._bus.drain()

    # ------------------------------------------------------------------
    # Session wiring
    # ------------------------------------------------------------------
    def _is_current(self, session: Session) -> bool:
        return self._session is session

    def _is_live(self, session: Session) -> bool:
        return self._session is session and session.status is SessionStatus.LIVE and session.channel is not None

    async def _on_channel_open(self, session: Session) -> None:
        if not self._is_current(session) or session.status is not SessionStatus.CONNECTING:
            return
        session.status = SessionStatus.LIVE
        logger.info("%s: live", session.label)
        self._notify(StateChange.STATUS)
        self._maybe_start_capture(session)

    def _maybe_start_capture(self, session: Session) -> None:
        if not self._is_live(session) or session.pipeline is not None or session.microphone is None:
            return
        session.pipeline = CapturePipeline(
            session.microphone,
            self.codec,
            is_current=lambda: self._is_live(session),
            send=lambda frame: self._send_frame(session, frame),
            on_fatal=lambda exc: self._teardown(session, "send failed"),
            name=session.label,
        )
        session.pipeline.start()

    async def _send_frame(self, session: Session, frame: EncodedFrame) -> None:
        channel = session.channel
        if channel is None:
            raise ChannelSendError("Channel is not connected")
        await channel.send(frame)

    async def _on_channel_message(self, session: Session, payload: Dict[str, Any]) -> None:
        if not self._is_current(session):
            return
        for event in events_from_server_message(payload):
            await self._bus.publish(InboundEvent(session=session, event=event))

    def _on_level(self, session: Session, level: float) -> None:
        if self._is_current(session):
            self._set_volume(level)

    async def _handle_inbound(self, item: InboundEvent) -> None:
        if not self._is_current(item.session):
            return
        event = item.event

        if isinstance(event, AudioChunkEvent):
            await self._play_chunk(item.session, event)
        elif isinstance(event, TranscriptDeltaEvent):
            self.merger.append(event.stream, event.text)
        elif isinstance(event, TurnCompleteEvent):
            records = self.merger.finalize()
            logger.debug("%s: turn complete, %s record(s)", item.session.label, len(records))

    async def _play_chunk(self, session: Session, event: AudioChunkEvent) -> None:
        playback_rate = self.config.audio.playback_sample_rate
        try:
            raw = self.codec.decode(event.data_b64)
            buffer = self.codec.decode_audio_data(
                raw,
                sample_rate_from_mime(event.mime_type, playback_rate),
                1,
                target_rate_hz=playback_rate,
            )
        except AudioDecodingError as exc:
            logger.warning("%s: dropping undecodable audio chunk: %s", session.label, exc)
            return
        if self._is_current(session) and self._scheduler is not None:
            self._scheduler.enqueue(buffer)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------
    async def _teardown(self, session: Session, reason: str) -> None:
        if self._session is not session:
            return
        self._session = None
        session.status = SessionStatus.IDLE
        logger.info("%s: stopping (%s)", session.label, reason)

        if session.pipeline is not None:
            session.pipeline.stop()
        if session.meter is not None:
            session.meter.stop()
        if session.microphone is not None:
            try:
                session.microphone.stop()
            except Exception:
                logger.exception("%s: failed to stop microphone", session.label)
        self._reset_playback_and_transcript()
        self._set_volume(0.0)
        self._notify(StateChange.STATUS)

        if self._dispatch_ready:
            await self._bus.clear()
        channel, session.channel = session.channel, None
        if channel is not None:
            await self._close_channel(session, channel)

    async def _close_channel(self, session: Session, channel: Any) -> None:
        try:
            await channel.close()
        except Exception:
            logger.exception("%s: failed to close channel", session.label)

    def _reset_playback_and_transcript(self) -> None:
        if self._scheduler is not None:
            self._scheduler.force_stop_all()
        self.merger.reset()

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------
    async def _ensure_dispatch(self) -> None:
        if self._dispatch_ready:
            return
        await self._bus.register_handler(
            HandlerConfig(
                name="session_inbound",
                queue_max=self.config.buffering.inbound_queue_max,
                overflow_policy=OverflowPolicy(self.config.buffering.overflow_policy),
                concurrency=1,
            ),
            self._handle_inbound,
        )
        self._dispatch_ready = True

    def _acquire_capture_context(self) -> CaptureContext:
        if self._capture_context is None:
            self._capture_context = self.devices.capture_context(self.config.audio.capture_sample_rate)
        return self._capture_context

    def _acquire_output_context(self) -> OutputContext:
        if self._output_context is None:
            self._output_context = self.devices.output_context(self.config.audio.playback_sample_rate)
            self._scheduler = PlaybackScheduler(self._output_context)
        return self._output_context

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------
    def _set_volume(self, level: float) -> None:
        if level == self._volume:
            return
        self._volume = level
        self._notify(StateChange.VOLUME)

    def _notify(self, change: StateChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("State listener failed on %s", change.value)


__all__ = ["CONNECTION_ERROR_TEXT", "SessionController", "StateChange", "StateListener"]
