"""ElevenLabs text-to-speech over HTTP."""

from __future__ import annotations

import httpx
from loguru import logger

from ..errors import ConfigurationError, SynthesisError

ELEVENLABS_URL = "https://api.elevenlabs.io/v1/text-to-speech"


class ElevenLabsSynthesizer:
    """Turn narration text into MP3 bytes using the ElevenLabs API.

    Example::

        synth = ElevenLabsSynthesizer(api_key, default_voice_id=voice)
        audio = await synth.synthesize("Hello Formula 1 fans!")
    """

    def __init__(
        self,
        api_key: str | None,
        default_voice_id: str,
        model_id: str = "eleven_multilingual_v2",
        http: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("Missing required configuration: ELEVENLABS_API_KEY")
        self.api_key = api_key
        self.default_voice_id = default_voice_id
        self.model_id = model_id
        self._http = http or httpx.AsyncClient(timeout=120.0)

    async def synthesize(self, text: str, voice_id: str | None = None) -> bytes:
        """Return MP3 audio for *text* spoken by *voice_id* (or the default voice).

        Raises :class:`SynthesisError` on transport errors, refusals and
        empty audio.
        """
        voice = voice_id or self.default_voice_id
        try:
            resp = await self._http.post(
                f"{ELEVENLABS_URL}/{voice}",
                json={"text": text, "model_id": self.model_id},
                headers={"xi-api-key": self.api_key, "Accept": "audio/mpeg"},
            )
        except httpx.HTTPError as exc:
            raise SynthesisError(f"Speech synthesis request failed: {exc}") from exc
        if not resp.is_success:
            logger.error(f"ElevenLabs error {resp.status_code}: {resp.text[:200]}")
            raise SynthesisError(f"Speech synthesis was refused ({resp.status_code})")
        if not resp.content:
            raise SynthesisError("Speech synthesis returned no audio")
        logger.debug(f"Synthesized {len(text)} chars into {len(resp.content)} bytes with voice {voice}")
        return resp.content

    async def aclose(self) -> None:
        await self._http.aclose()
