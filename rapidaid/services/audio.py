"""
Audible alert with tiered fallback.

The alerter tries the primary recorded tone, then the secondary one, then a
beep synthesized in-process and embedded as a data URI, stopping at the first
source that starts playing. No failure ever reaches the caller: an alert
without sound is acceptable, a crashed alert path is not.
"""
import base64
import binascii
import io
import logging
import math
import struct
import wave
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence
from urllib.parse import unquote_to_bytes, urljoin

import httpx

from ..core.errors import AudioError
from .sse import EventBroadcaster

logger = logging.getLogger(__name__)

DEFAULT_VOLUME = 0.8


@dataclass(frozen=True)
class SoundSource:
    name: str
    uri: str


@dataclass(frozen=True)
class SoundClip:
    source: SoundSource
    uri: str
    mime_type: str
    data: bytes


def synthesize_beep(frequency: float = 880.0, duration: float = 0.25, sample_rate: int = 8000) -> bytes:
    """Renders a short 8-bit mono sine beep as a complete WAV file."""
    frames = int(duration * sample_rate)
    samples = bytes(
        int(128 + 100 * math.sin(2 * math.pi * frequency * i / sample_rate)) for i in range(frames)
    )
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(1)
        wav.setframerate(sample_rate)
        wav.writeframes(samples)
    return buffer.getvalue()


FALLBACK_BEEP_URI = "data:audio/wav;base64," + base64.b64encode(synthesize_beep()).decode("ascii")

DEFAULT_SOUND_SOURCES = (
    SoundSource("MP3", "/alert-sound.mp3"),
    SoundSource("WAV", "/alert-sound.wav"),
    SoundSource("Fallback beep", FALLBACK_BEEP_URI),
)

AudioOutput = Callable[[SoundClip, float], Awaitable[None]]


def _decode_data_uri(source: SoundSource) -> SoundClip:
    header, sep, payload = source.uri[5:].partition(",")
    if not sep:
        raise AudioError(source.name, "malformed data URI")
    mime_type = header.split(";")[0] or "application/octet-stream"
    try:
        if header.endswith(";base64"):
            data = base64.b64decode(payload, validate=True)
        else:
            data = unquote_to_bytes(payload)
    except (binascii.Error, ValueError) as e:
        raise AudioError(source.name, f"decode error: {e}")
    return SoundClip(source=source, uri=source.uri, mime_type=mime_type, data=data)


def validate_clip(clip: SoundClip):
    """Raises AudioError unless the clip holds a decodable WAV or MP3 stream."""
    data = clip.data
    if not data:
        raise AudioError(clip.source.name, "decode error: empty audio data")

    if data[:4] == b"RIFF":
        try:
            with wave.open(io.BytesIO(data), "rb") as wav:
                if wav.getnframes() == 0:
                    raise AudioError(clip.source.name, "decode error: WAV has no frames")
        except (wave.Error, EOFError, struct.error) as e:
            raise AudioError(clip.source.name, f"decode error: {e}")
        return

    if data[:3] == b"ID3" or (len(data) > 1 and data[0] == 0xFF and data[1] & 0xE0 == 0xE0):
        return

    raise AudioError(clip.source.name, f"decode error: unsupported audio format ({clip.mime_type})")


class ResourceSoundPlayer:
    """
    The "play and report success" primitive.

    Loads a sound source (inline data URI or URL relative to `base_url`),
    checks that it decodes, then hands it to the audio output. Any failure is
    raised as AudioError.
    """

    def __init__(self, output: AudioOutput, client: Optional[httpx.AsyncClient] = None,
                 base_url: Optional[str] = None, volume: float = DEFAULT_VOLUME):
        self.output = output
        self.client = client
        self.base_url = base_url
        self.volume = volume

    async def play(self, source: SoundSource):
        clip = await self.load(source)
        validate_clip(clip)
        await self.output(clip, self.volume)

    async def load(self, source: SoundSource) -> SoundClip:
        if source.uri.startswith("data:"):
            return _decode_data_uri(source)

        url = source.uri
        if not url.startswith(("http://", "https://")):
            if not self.base_url:
                raise AudioError(source.name, f"not found: no sound base URL to resolve {url}")
            url = urljoin(self.base_url.rstrip("/") + "/", url.lstrip("/"))
        if self.client is None:
            raise AudioError(source.name, "not found: no HTTP client configured")

        try:
            response = await self.client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise AudioError(source.name, f"not found: HTTP {e.response.status_code} for {url}")
        except httpx.RequestError as e:
            raise AudioError(source.name, f"not found: {e}")

        mime_type = response.headers.get("content-type", "application/octet-stream").split(";")[0]
        return SoundClip(source=source, uri=url, mime_type=mime_type, data=response.content)


class BroadcastAudioOutput:
    """
    Plays sounds on the dashboard clients by publishing a `sound` event.

    Playback is rejected when no client is connected to play it.
    """

    def __init__(self, broadcaster: EventBroadcaster):
        self.broadcaster = broadcaster

    async def __call__(self, clip: SoundClip, volume: float):
        delivered = self.broadcaster.publish("sound", {
            "name": clip.source.name,
            "uri": clip.uri,
            "mimeType": clip.mime_type,
            "volume": volume,
        })
        if delivered == 0:
            raise AudioError(clip.source.name, "playback rejected: no dashboard client connected")


class AudioAlerter:
    """Plays the alert sound, trying each source in order until one starts."""

    def __init__(self, player: ResourceSoundPlayer, sources: Sequence[SoundSource] = DEFAULT_SOUND_SOURCES):
        self.player = player
        self.sources: List[SoundSource] = list(sources)

    async def play(self) -> bool:
        logger.info("🔊 Attempting to play alert sound...")
        for source in self.sources:
            try:
                await self.player.play(source)
            except AudioError as e:
                logger.error(f"❌ {source.name} failed: {e.reason}")
                continue
            except Exception as e:
                logger.error(f"❌ {source.name} failed unexpectedly: {e}", exc_info=True)
                continue
            logger.info(f"✅ {source.name} sound played successfully")
            return True

        logger.error("❌ All sound methods failed")
        return False
