import base64
import io
import wave
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
import respx
from httpx import Response

from rapidaid.core.errors import AudioError
from rapidaid.services.audio import (
    DEFAULT_SOUND_SOURCES,
    FALLBACK_BEEP_URI,
    AudioAlerter,
    BroadcastAudioOutput,
    ResourceSoundPlayer,
    SoundClip,
    SoundSource,
    synthesize_beep,
    validate_clip,
)
from rapidaid.services.sse import EventBroadcaster

SOUND_BASE_URL = "http://dashboard.test"
MP3_BYTES = b"ID3\x04\x00\x00\x00\x00\x00\x00" + b"\x00" * 32


def test_default_sources_order():
    assert [s.name for s in DEFAULT_SOUND_SOURCES] == ["MP3", "WAV", "Fallback beep"]
    assert DEFAULT_SOUND_SOURCES[2].uri == FALLBACK_BEEP_URI
    assert FALLBACK_BEEP_URI.startswith("data:audio/wav;base64,")


def test_synthesized_beep_is_valid_wav():
    with wave.open(io.BytesIO(synthesize_beep()), "rb") as wav:
        assert wav.getnchannels() == 1
        assert wav.getnframes() > 0


@pytest.mark.asyncio
async def test_alerter_first_success_wins():
    player = Mock()
    player.play = AsyncMock()
    alerter = AudioAlerter(player)

    assert await alerter.play() is True

    player.play.assert_awaited_once_with(DEFAULT_SOUND_SOURCES[0])


@pytest.mark.asyncio
async def test_alerter_falls_back_in_order():
    """
    Tests that each tier is tried only after the previous one failed.
    """
    player = Mock()
    player.play = AsyncMock(side_effect=[
        AudioError("MP3", "not found"),
        AudioError("WAV", "decode error"),
        None,
    ])
    alerter = AudioAlerter(player)

    assert await alerter.play() is True

    assert [c.args[0] for c in player.play.await_args_list] == list(DEFAULT_SOUND_SOURCES)


@pytest.mark.asyncio
async def test_alerter_swallows_total_failure():
    player = Mock()
    player.play = AsyncMock(side_effect=[
        AudioError("MP3", "not found"),
        RuntimeError("unexpected"),
        AudioError("Fallback beep", "playback rejected"),
    ])
    alerter = AudioAlerter(player)

    assert await alerter.play() is False
    assert player.play.await_count == 3


@pytest.mark.asyncio
async def test_player_plays_inline_beep_without_network():
    output = AsyncMock()
    player = ResourceSoundPlayer(output, client=None, base_url=None, volume=0.8)

    await player.play(DEFAULT_SOUND_SOURCES[2])

    clip, volume = output.await_args.args
    assert clip.mime_type == "audio/wav"
    assert clip.data == synthesize_beep()
    assert volume == 0.8


@pytest.mark.asyncio
async def test_player_relative_uri_without_base_url_fails():
    player = ResourceSoundPlayer(AsyncMock(), client=None, base_url=None)

    with pytest.raises(AudioError, match="not found"):
        await player.play(DEFAULT_SOUND_SOURCES[0])


@pytest.mark.asyncio
@respx.mock
async def test_player_fetches_relative_uri_from_base_url():
    respx.get(f"{SOUND_BASE_URL}/alert-sound.mp3").mock(
        return_value=Response(200, content=MP3_BYTES, headers={"content-type": "audio/mpeg"})
    )
    output = AsyncMock()
    async with httpx.AsyncClient() as client:
        player = ResourceSoundPlayer(output, client=client, base_url=SOUND_BASE_URL)
        await player.play(DEFAULT_SOUND_SOURCES[0])

    clip = output.await_args.args[0]
    assert clip.uri == f"{SOUND_BASE_URL}/alert-sound.mp3"
    assert clip.mime_type == "audio/mpeg"


@pytest.mark.asyncio
@respx.mock
async def test_player_missing_resource_raises_audio_error():
    respx.get(f"{SOUND_BASE_URL}/alert-sound.mp3").mock(return_value=Response(404))
    async with httpx.AsyncClient() as client:
        player = ResourceSoundPlayer(AsyncMock(), client=client, base_url=SOUND_BASE_URL)
        with pytest.raises(AudioError, match="HTTP 404"):
            await player.play(DEFAULT_SOUND_SOURCES[0])


@pytest.mark.asyncio
@respx.mock
async def test_alerter_reaches_beep_when_recorded_tones_are_missing():
    """
    Tests the real player chain: MP3 404s, WAV is corrupt, the inline beep plays.
    """
    respx.get(f"{SOUND_BASE_URL}/alert-sound.mp3").mock(return_value=Response(404))
    respx.get(f"{SOUND_BASE_URL}/alert-sound.wav").mock(return_value=Response(200, content=b"RIFF\x00\x00garbage"))
    output = AsyncMock()
    async with httpx.AsyncClient() as client:
        alerter = AudioAlerter(ResourceSoundPlayer(output, client=client, base_url=SOUND_BASE_URL))
        assert await alerter.play() is True

    output.assert_awaited_once()
    assert output.await_args.args[0].source.name == "Fallback beep"


def test_validate_clip_rejects_unknown_format():
    clip = SoundClip(source=SoundSource("X", "x"), uri="x", mime_type="text/plain", data=b"hello")
    with pytest.raises(AudioError, match="decode error"):
        validate_clip(clip)


def test_validate_clip_rejects_empty_data():
    clip = SoundClip(source=SoundSource("X", "x"), uri="x", mime_type="audio/wav", data=b"")
    with pytest.raises(AudioError):
        validate_clip(clip)


@pytest.mark.asyncio
async def test_player_rejects_malformed_data_uri():
    player = ResourceSoundPlayer(AsyncMock())
    with pytest.raises(AudioError, match="decode error"):
        await player.play(SoundSource("Broken", "data:audio/wav;base64,@@@not-base64@@@"))


@pytest.mark.asyncio
async def test_broadcast_output_rejects_without_clients():
    output = BroadcastAudioOutput(EventBroadcaster())
    clip = SoundClip(source=SoundSource("Fallback beep", FALLBACK_BEEP_URI), uri=FALLBACK_BEEP_URI,
                     mime_type="audio/wav", data=synthesize_beep())

    with pytest.raises(AudioError, match="playback rejected"):
        await output(clip, 0.8)


@pytest.mark.asyncio
async def test_broadcast_output_publishes_sound_event():
    broadcaster = EventBroadcaster()
    queue = broadcaster.subscribe()
    output = BroadcastAudioOutput(broadcaster)
    clip = SoundClip(source=SoundSource("Fallback beep", FALLBACK_BEEP_URI), uri=FALLBACK_BEEP_URI,
                     mime_type="audio/wav", data=synthesize_beep())

    await output(clip, 0.8)

    message = queue.get_nowait()
    assert message.startswith("event: sound\n")
    assert '"volume": 0.8' in message
    assert base64.b64encode(synthesize_beep()).decode("ascii") in message
