"""
Gemini adapters (Generative Language REST API via requests).

One blocking `GeminiClient` does the HTTP; the async adapters run it in a
worker thread. Errors carry the HTTP status and API message verbatim so the
retry policy can classify them.
"""

import asyncio
import base64
import json
import logging
import os
import random
import re
import sys
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

import requests
from pydub import AudioSegment
from rich.prompt import Prompt

from viraltube.config import (
    GEMINI_API_KEY,
    GEMINI_BASE_URL,
    GEMINI_IMAGE_MODEL,
    GEMINI_REQUEST_TIMEOUT,
    GEMINI_TEXT_MODEL,
    GEMINI_TTS_MODEL,
    GEMINI_VIDEO_MODEL,
    TEMP_DIR,
    TTS_SAMPLE_RATE,
)
from viraltube.domain.errors import ConfigurationError, GenerationError
from viraltube.domain.models import Script, Topic
from viraltube.ports.interfaces import (
    IIntroVideoGenerator,
    IScriptWriter,
    IStoryboardGenerator,
    IThumbnailGenerator,
    ITopicDiscovery,
    IVoiceoverSynthesizer,
)

logger = logging.getLogger(__name__)

VIDEO_POLL_SECONDS = 8.0
VIDEO_DOWNLOAD_ATTEMPTS = 5
VIDEO_DOWNLOAD_PAUSE = 4.0

LIVE_STRATEGIES = [
    "AI_REVOLUTION_UPDATES",
    "TECH_BREAKTHROUGHS",
    "GLOBAL_GEOPOLITICAL_SHIFTS",
    "MAHABHARATA_UNSUNG_HEROES",
    "SANATANA_DHARMA_SCIENTIFIC_PROOFS",
    "PURANIC_PROPHECIES_KALKI",
    "GREAT_TELUGU_DYNASTIES_WARS",
]

TOPIC_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "id": {"type": "STRING"},
            "headline": {"type": "STRING"},
            "category": {"type": "STRING"},
            "viralityScore": {"type": "NUMBER"},
            "description": {"type": "STRING"},
            "sources": {"type": "ARRAY", "items": {"type": "STRING"}},
        },
        "required": ["id", "headline", "category", "viralityScore", "description", "sources"],
    },
}

SCRIPT_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "title": {"type": "STRING"},
        "thumbnailText": {"type": "STRING", "description": "Short 3-5 word punchy text for thumbnail overlay"},
        "description": {"type": "STRING"},
        "tags": {"type": "ARRAY", "items": {"type": "STRING"}},
        "hook": {"type": "STRING"},
        "fullScriptOutline": {"type": "ARRAY", "items": {"type": "STRING"}},
        "scriptSections": {"type": "ARRAY", "items": {"type": "STRING"}},
    },
    "required": ["title", "thumbnailText", "description", "tags", "hook", "fullScriptOutline", "scriptSections"],
}

IMAGE_CONFIG = {"imageConfig": {"aspectRatio": "16:9", "imageSize": "1K"}}


def parse_json_text(text: str) -> Any:
    """JSON from a model reply, tolerating ```json fences."""
    cleaned = text.strip()
    fenced = re.search(r"```(?:json)?\s*(.*?)```", cleaned, re.DOTALL)
    if fenced:
        cleaned = fenced.group(1).strip()
    return json.loads(cleaned)


def parse_topics(payload: Any, default_sources: Optional[List[str]] = None) -> List[Topic]:
    if isinstance(payload, dict):
        payload = payload.get("topics") or [payload]
    topics = []
    for i, item in enumerate(payload or []):
        if not isinstance(item, dict) or not item.get("headline"):
            continue
        data = dict(item)
        data.setdefault("id", f"topic-{int(time.time())}-{i}")
        data["id"] = str(data["id"])
        if not data.get("sources") and default_sources:
            data["sources"] = list(default_sources)
        topics.append(Topic.model_validate(data))
    return topics


def pcm_rate(mime_type: str, default: int = TTS_SAMPLE_RATE) -> int:
    match = re.search(r"rate=(\d+)", mime_type or "")
    return int(match.group(1)) if match else default


class GeminiClient:
    """Blocking REST client. Holds the API key so it can be re-selected at runtime."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = GEMINI_BASE_URL,
        timeout: int = GEMINI_REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = (api_key if api_key is not None else GEMINI_API_KEY).strip()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    @property
    def has_key(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        if not self.api_key:
            raise ConfigurationError("API Key not found. Set GEMINI_API_KEY in .env")
        return {"x-goog-api-key": self.api_key, "Content-Type": "application/json"}

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            response = self._session.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as exc:
            raise GenerationError(f"Request timed out: {exc}") from exc
        except requests.exceptions.RequestException as exc:
            raise GenerationError(f"Network error: {exc}") from exc

        if response.status_code != 200:
            message = response.text[:500]
            status = ""
            try:
                error = response.json().get("error", {})
                message = error.get("message", message)
                status = error.get("status", "")
            except ValueError:
                pass
            raise GenerationError(
                f"{response.status_code} {status} {message}".replace("  ", " ").strip(),
                status_code=response.status_code,
            )
        return response

    def generate_content(self, model: str, body: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/models/{model}:generateContent"
        return self._request("POST", url, json=body).json()

    def generate_text(
        self,
        model: str,
        prompt: str,
        schema: Optional[Dict[str, Any]] = None,
        use_google_search: bool = False,
    ) -> str:
        body: Dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        if schema is not None:
            body["generationConfig"] = {"responseMimeType": "application/json", "responseSchema": schema}
        if use_google_search:
            body["tools"] = [{"googleSearch": {}}]

        result = self.generate_content(model, body)
        parts = (result.get("candidates") or [{}])[0].get("content", {}).get("parts", [])
        return "".join(part.get("text", "") for part in parts)

    def generate_inline(
        self,
        model: str,
        prompt: str,
        generation_config: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, str]]:
        """Inline data parts ({mimeType, data}) of the first candidate."""
        body: Dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        if generation_config:
            body["generationConfig"] = generation_config
        result = self.generate_content(model, body)
        parts = (result.get("candidates") or [{}])[0].get("content", {}).get("parts", [])
        return [part["inlineData"] for part in parts if part.get("inlineData")]

    def start_video(self, model: str, prompt: str, parameters: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/models/{model}:predictLongRunning"
        return self._request("POST", url, json={"instances": [{"prompt": prompt}], "parameters": parameters}).json()

    def get_operation(self, name: str) -> Dict[str, Any]:
        return self._request("GET", f"{self.base_url}/{name}").json()

    def download(self, uri: str) -> bytes:
        response = self._request("GET", uri, allow_redirects=True)
        return response.content


class MediaWriter:
    """Writes generated media under TEMP_DIR and hands back file paths."""

    def __init__(self, root: Optional[str] = None):
        self.root = root or os.path.join(TEMP_DIR, "assets")

    def write(self, data: bytes, suffix: str, prefix: str = "asset") -> str:
        os.makedirs(self.root, exist_ok=True)
        path = os.path.join(self.root, f"{prefix}_{uuid.uuid4().hex[:12]}{suffix}")
        with open(path, "wb") as handle:
            handle.write(data)
        return path

    def write_image(self, inline: Dict[str, str], prefix: str) -> str:
        suffix = ".jpg" if "jpeg" in inline.get("mimeType", "") else ".png"
        return self.write(base64.b64decode(inline["data"]), suffix, prefix)


class _GeminiAdapter:
    def __init__(self, client: Optional[GeminiClient] = None, media: Optional[MediaWriter] = None):
        self._client = client or GeminiClient()
        self._media = media or MediaWriter()


class GeminiTopicDiscovery(_GeminiAdapter, ITopicDiscovery):
    """Live trend search (google search grounding) or concepts around a forced idea."""

    def __init__(self, client: Optional[GeminiClient] = None, rng: Optional[random.Random] = None):
        super().__init__(client)
        self._rng = rng or random.Random()

    async def discover(self, forced_concept: Optional[str] = None) -> List[Topic]:
        if forced_concept:
            return await asyncio.to_thread(self._concepts_for, forced_concept)
        return await asyncio.to_thread(self._live_search)

    def _concepts_for(self, concept: str) -> List[Topic]:
        prompt = f"""You are a Senior Content Strategist for a high-authority Telugu YouTube channel.

YOUR TASK: Create 3 Viral Video Concepts based on this specific topic: "{concept}".

REQUIREMENTS:
1. Titles must be in Telugu/English mix (Tanglish) or pure Telugu.
2. Style: Serious, Cinematic, Mystery, or "Hidden Truth" style.
3. Avoid generic titles. Use "Unknown Facts", "Dark Secrets", "Real Story" angles.
4. Each concept must have a "Virality Score" (85-99).

Return a JSON array of objects with keys: id, headline, category, viralityScore (number), description, sources."""
        text = self._client.generate_text(GEMINI_TEXT_MODEL, prompt, schema=TOPIC_SCHEMA)
        if not text:
            raise GenerationError("No response from AI for forced topic", stage="research")
        return parse_topics(parse_json_text(text), default_sources=["Google Books", "Wikipedia"])

    def _live_search(self) -> List[Topic]:
        strategy = self._rng.choice(LIVE_STRATEGIES)
        session_id = format(int(time.time() * 1000), "x")
        prompt = f"""You are a Viral Content Specialist for the Telugu market.
Session ID: {session_id}
Strategy: {strategy}

Find 3 VIRAL and SHOCKING topics.
If Strategy is AI/Tech: Focus on "How AI changes jobs", "New Gadgets", "Future of World".
If Strategy is Politics: Focus on "Global War risks", "India's new power", "Hidden Truths".
If Strategy is Mythology: Focus on untold secrets/mysteries.

Return ONLY a JSON array of 3 objects with keys: id, headline, category,
viralityScore (number), description, sources (array of URLs).
Headline must be a high-CTR clickbait title in Telugu/English mix."""
        logger.info("Live trend search (strategy=%s)", strategy)
        text = self._client.generate_text(GEMINI_TEXT_MODEL, prompt, use_google_search=True)
        if not text:
            return []
        return parse_topics(parse_json_text(text))


class GeminiScriptWriter(_GeminiAdapter, IScriptWriter):
    async def write_script(self, topic: Topic) -> Script:
        return await asyncio.to_thread(self._write, topic)

    def _write(self, topic: Topic) -> Script:
        prompt = f"""You are the lead writer for a 10-million subscriber channel.
Write a DEEP, EMOTIONAL, and DETAILED script in TELUGU but using ENGLISH CHARACTERS (TRANSLITERATION).
Example: instead of "నమస్కారం", write "Namaskaram".

Topic: "{topic.headline}"
Category: "{topic.category}"

RULES:
1. Narrative: High drama, storytelling style.
2. Length: Detailed enough for 10 minutes.
3. Call to Action: At 2 minutes, ask for "Subscription".
4. Ending: Leave the audience with a philosophical question.
5. Thumbnail Text: Create a SHORT, IMPACTFUL, 3-word text in NATIVE TELUGU SCRIPT.
   Do NOT use English characters for thumbnail text.

Language: Conversational but powerful Transliterated Telugu for the SCRIPT, but NATIVE TELUGU for THUMBNAIL TEXT."""
        text = self._client.generate_text(GEMINI_TEXT_MODEL, prompt, schema=SCRIPT_SCHEMA)
        if not text:
            raise GenerationError("Script failed", stage="script")
        data = parse_json_text(text)
        title = data.get("title") or topic.headline
        return Script(
            title=title,
            thumbnail_text=data.get("thumbnailText") or title[:20],
            description=data.get("description", ""),
            tags=data.get("tags") or [],
            hook=data.get("hook", ""),
            full_script_outline=data.get("fullScriptOutline") or [],
            full_script_content="\n\n".join(data.get("scriptSections") or []),
        )


class GeminiThumbnailGenerator(_GeminiAdapter, IThumbnailGenerator):
    async def make_thumbnails(self, topic: str, title: str, thumbnail_text: Optional[str] = None) -> List[str]:
        return await asyncio.to_thread(self._make, topic, title, thumbnail_text)

    def _make(self, topic: str, title: str, thumbnail_text: Optional[str]) -> List[str]:
        text_instruction = (
            f'PRIMARY HEADLINE: "{thumbnail_text}"' if thumbnail_text else "Generate a powerful, short Telugu headline."
        )
        prompt = f"""Create a VIRAL, ULTRA-HIGH QUALITY YouTube thumbnail.

TOPIC: "{title}"
CATEGORY: {topic}

COMPOSITION MUST HAVE TWO DISTINCT LAYERS:

LAYER 1: BACKGROUND (CINEMATIC 3D)
- Hyper-realistic 8K, ray-traced lighting, dramatic volumetric shadows.
- Deep 3D scene related to "{title}".

LAYER 2: TEXT OVERLAY (2D FLAT VECTOR)
- The text "{thumbnail_text or 'TELUGU TEXT'}" must be a sticker floating on top.
- No 3D effects on text. Massive bold sans-serif, yellow/white with thick black outline.

{text_instruction}

Aspect Ratio 16:9."""
        parts = self._client.generate_inline(GEMINI_IMAGE_MODEL, prompt, IMAGE_CONFIG)
        return [self._media.write_image(part, "thumbnail") for part in parts]


class GeminiVoiceover(_GeminiAdapter, IVoiceoverSynthesizer):
    """TTS returns raw 16-bit mono PCM; it is wrapped into a WAV file with pydub."""

    async def synthesize(self, text: str, voice_id: str) -> str:
        return await asyncio.to_thread(self._synthesize, text, voice_id)

    def _synthesize(self, text: str, voice_id: str) -> str:
        config = {
            "responseModalities": ["AUDIO"],
            "speechConfig": {"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice_id}}},
        }
        parts = self._client.generate_inline(GEMINI_TTS_MODEL, text, config)
        if not parts or not parts[0].get("data"):
            raise GenerationError("No audio generated", stage="voiceover")

        pcm = base64.b64decode(parts[0]["data"])
        segment = AudioSegment(
            data=pcm,
            sample_width=2,
            frame_rate=pcm_rate(parts[0].get("mimeType", "")),
            channels=1,
        )
        path = os.path.join(self._media.root, f"voiceover_{uuid.uuid4().hex[:12]}.wav")
        os.makedirs(self._media.root, exist_ok=True)
        segment.export(path, format="wav")
        logger.info("Voiceover: %.1fs of narration", segment.duration_seconds)
        return path


class GeminiStoryboard(_GeminiAdapter, IStoryboardGenerator):
    async def generate_frame(self, topic: str, scene: str) -> Optional[str]:
        return await asyncio.to_thread(self._frame, topic, scene)

    def _frame(self, topic: str, scene: str) -> Optional[str]:
        prompt = (
            f"Cinematic movie still for a Telugu documentary. Topic: {topic}. Scene: {scene}. "
            "4k, Indian aesthetics, dramatic shadows. Aspect Ratio 16:9."
        )
        parts = self._client.generate_inline(GEMINI_IMAGE_MODEL, prompt, IMAGE_CONFIG)
        if not parts:
            return None
        return self._media.write_image(parts[0], "storyboard")


class VeoIntroGenerator(_GeminiAdapter, IIntroVideoGenerator):
    """Long-running Veo operation: polled every 8 s, download retried 5 times 4 s apart."""

    def __init__(
        self,
        client: Optional[GeminiClient] = None,
        media: Optional[MediaWriter] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        super().__init__(client, media)
        self._sleep = sleep or asyncio.sleep

    async def make_intro(self, topic: str, hook: str) -> str:
        operation = await asyncio.to_thread(
            self._client.start_video,
            GEMINI_VIDEO_MODEL,
            f"Epic cinematic movie intro for: {topic}. Context: {hook}",
            {"sampleCount": 1, "resolution": "720p", "aspectRatio": "16:9"},
        )
        while not operation.get("done"):
            await self._sleep(VIDEO_POLL_SECONDS)
            operation = await asyncio.to_thread(self._client.get_operation, operation["name"])

        if operation.get("error"):
            raise GenerationError(f"Video generation failed: {operation['error'].get('message')}", stage="intro")

        samples = operation.get("response", {}).get("generateVideoResponse", {}).get("generatedSamples") or []
        uri = samples[0].get("video", {}).get("uri") if samples else None
        if not uri:
            raise GenerationError("Video URI missing", stage="intro")

        data = await self._download(uri)
        return self._media.write(data, ".mp4", "intro")

    async def _download(self, uri: str) -> bytes:
        for attempt in range(1, VIDEO_DOWNLOAD_ATTEMPTS + 1):
            try:
                return await asyncio.to_thread(self._client.download, uri)
            except GenerationError as exc:
                if attempt == VIDEO_DOWNLOAD_ATTEMPTS:
                    raise
                logger.warning("Video download attempt %d failed: %s. Retrying...", attempt, exc)
                await self._sleep(VIDEO_DOWNLOAD_PAUSE)
        raise GenerationError("Failed to download final video asset.", stage="intro")


class GeminiKeySelector:
    """
    Key check before asset production, and the re-selection hook the retry
    policy calls when the API rejects a rotated key.
    """

    def __init__(self, client: GeminiClient, interactive: Optional[bool] = None):
        self._client = client
        self._interactive = sys.stdin.isatty() if interactive is None else interactive

    async def ensure_key(self) -> None:
        if not self._client.has_key:
            await self.select_key()

    async def select_key(self) -> None:
        if not self._interactive:
            raise ConfigurationError("No usable Gemini API key and no terminal to ask for one")
        key = await asyncio.to_thread(Prompt.ask, "Gemini API key", password=True)
        if not key.strip():
            raise ConfigurationError("No Gemini API key entered")
        self._client.api_key = key.strip()
        logger.info("Gemini API key updated")
