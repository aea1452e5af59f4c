"""
Shared fakes for the pipeline tests.
Every collaborator port has an in-memory fake that records its calls.
"""

from __future__ import annotations

import asyncio
import random
from typing import Any, Callable, Dict, List, Optional

import pytest

from viraltube.application.pipeline import StageController
from viraltube.application.retry import RetryPolicy
from viraltube.domain.models import MediaBlob, Script, Topic
from viraltube.ports.interfaces import (
    ICredentialProvider,
    IIntroVideoGenerator,
    IPublisher,
    IScriptWriter,
    IStoryboardGenerator,
    IThumbnailGenerator,
    ITopicDiscovery,
    ITopicHistory,
    IVideoRenderer,
    IVoiceoverSynthesizer,
)


class FakeSleep:
    """Records requested delays and returns immediately; `on(delay, fn)` runs fn during that delay."""

    def __init__(self):
        self.delays: List[float] = []
        self.hooks: Dict[float, Callable[[], Any]] = {}

    def on(self, delay: float, fn: Callable[[], Any]) -> None:
        self.hooks[delay] = fn

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        hook = self.hooks.pop(delay, None)
        if hook is not None:
            hook()
        await asyncio.sleep(0)


class FixedRandom(random.Random):
    def __init__(self, value: float):
        super().__init__(0)
        self.value = value

    def random(self) -> float:
        return self.value


class RecordingScheduler:
    """Scheduler stand-in: records continuations instead of running them."""

    def __init__(self):
        self.scheduled: List[Dict[str, Any]] = []
        self.cancel_calls = 0

    def call_later(self, delay: float, factory: Callable, name: str):
        self.scheduled.append({"delay": delay, "factory": factory, "name": name})
        return None

    def cancel_all(self) -> int:
        self.cancel_calls += 1
        count = len(self.scheduled)
        self.scheduled = []
        return count

    def pending(self) -> List[str]:
        return [item["name"] for item in self.scheduled]

    async def drain(self) -> None:
        return None

    def names(self) -> List[str]:
        return self.pending()

    async def fire(self, name: str) -> None:
        for item in list(self.scheduled):
            if item["name"] == name:
                self.scheduled.remove(item)
                await item["factory"]()
                return
        raise AssertionError(f"nothing scheduled under {name!r}")


def make_topic(topic_id: str = "t1", headline: str = "Karna's curse", score: float = 90) -> Topic:
    return Topic(id=topic_id, headline=headline, category="Mythology", virality_score=score)


def make_script(scene_count: int = 25, title: str = "Karna Real Story") -> Script:
    return Script(
        title=title,
        thumbnail_text="Karna",
        description="desc",
        tags=["karna", "mahabharata"],
        hook="Nobody told you this.",
        full_script_outline=[f"scene {i}" for i in range(scene_count)],
        full_script_content="Long narration.",
    )


class FakeDiscovery(ITopicDiscovery):
    def __init__(self, topics: Optional[List[Topic]] = None, error: Optional[Exception] = None):
        self.topics = [make_topic()] if topics is None else topics
        self.error = error
        self.calls: List[Optional[str]] = []

    async def discover(self, forced_concept: Optional[str] = None) -> List[Topic]:
        self.calls.append(forced_concept)
        if self.error is not None:
            raise self.error
        return list(self.topics)


class FakeScriptWriter(IScriptWriter):
    def __init__(self, script: Optional[Script] = None, error: Optional[Exception] = None, on_call=None):
        self.script = script or make_script()
        self.error = error
        self.on_call = on_call
        self.calls: List[Topic] = []

    async def write_script(self, topic: Topic) -> Script:
        self.calls.append(topic)
        if self.on_call is not None:
            self.on_call(topic)
        if self.error is not None:
            raise self.error
        return self.script


class FakeThumbnails(IThumbnailGenerator):
    def __init__(self, variants: Optional[List[str]] = None, error: Optional[Exception] = None):
        self.variants = ["thumb-a.png", "thumb-b.png"] if variants is None else variants
        self.error = error
        self.calls: List[tuple] = []

    async def make_thumbnails(self, topic: str, title: str, thumbnail_text: Optional[str] = None) -> List[str]:
        self.calls.append((topic, title, thumbnail_text))
        if self.error is not None:
            raise self.error
        return list(self.variants)


class FakeVoiceover(IVoiceoverSynthesizer):
    def __init__(self, ref: str = "narration.wav", error: Optional[Exception] = None):
        self.ref = ref
        self.error = error
        self.calls: List[tuple] = []

    async def synthesize(self, text: str, voice_id: str) -> str:
        self.calls.append((text, voice_id))
        if self.error is not None:
            raise self.error
        return self.ref


class FakeStoryboards(IStoryboardGenerator):
    def __init__(self, failing: Optional[Dict[str, Exception]] = None):
        self.failing = failing or {}
        self.calls: List[str] = []

    async def generate_frame(self, topic: str, scene: str) -> Optional[str]:
        self.calls.append(scene)
        if scene in self.failing:
            raise self.failing[scene]
        return f"gen-{scene}.png"


class FakeIntro(IIntroVideoGenerator):
    def __init__(self, ref: str = "intro.mp4", error: Optional[Exception] = None):
        self.ref = ref
        self.error = error
        self.calls = 0

    async def make_intro(self, topic: str, hook: str) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.ref


class FakeCredentials(ICredentialProvider):
    def __init__(self, linked: bool = True, grant_on_select: bool = True, on_select=None, error=None):
        self.linked = linked
        self.grant_on_select = grant_on_select
        self.on_select = on_select
        self.error = error
        self.select_calls = 0
        self.cleared = False

    async def has_credential(self) -> bool:
        if self.error is not None:
            raise self.error
        return self.linked

    async def get_credential(self) -> Optional[Any]:
        return "token" if self.linked else None

    async def select_credential(self) -> None:
        self.select_calls += 1
        if self.on_select is not None:
            self.on_select()
        if self.grant_on_select:
            self.linked = True

    async def clear(self) -> None:
        self.cleared = True
        self.linked = False


class FakePublisher(IPublisher):
    def __init__(self, video_id: str = "vid-1", error: Optional[Exception] = None):
        self.video_id = video_id
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def upload(self, video, thumbnail_ref, script, credential, on_progress=None) -> str:
        self.calls.append(
            {"video": video, "thumbnail": thumbnail_ref, "script": script, "credential": credential}
        )
        if on_progress is not None:
            on_progress(50)
        if self.error is not None:
            raise self.error
        return self.video_id


class FakeHistory(ITopicHistory):
    def __init__(self, topic: Optional[Topic] = None):
        self.topic = topic
        self.marked: List[str] = []
        self.picks = 0

    def pick_unused(self) -> Optional[Topic]:
        self.picks += 1
        return self.topic

    def mark_used(self, topic_id: str) -> None:
        self.marked.append(topic_id)

    def reset(self) -> None:
        self.marked = []


class FakeRenderer(IVideoRenderer):
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def render(self, assets, script, on_progress=None) -> MediaBlob:
        self.calls.append({"assets": assets, "script": script})
        if on_progress is not None:
            on_progress("Rendering...")
        if self.error is not None:
            raise self.error
        return MediaBlob(data=b"\x00\x00\x00\x18ftypmp42", duration=12.5)


class Harness:
    """A controller wired to fakes, with every fake reachable by name."""

    def __init__(self, rng_value: float = 0.1, autonomous: bool = True, **fakes):
        self.sleep = FakeSleep()
        self.scheduler = RecordingScheduler()
        self.discovery = fakes.pop("discovery", None) or FakeDiscovery()
        self.script_writer = fakes.pop("script_writer", None) or FakeScriptWriter()
        self.thumbnails = fakes.pop("thumbnails", None) or FakeThumbnails()
        self.voiceover = fakes.pop("voiceover", None) or FakeVoiceover()
        self.storyboards = fakes.pop("storyboards", None) or FakeStoryboards()
        self.intro_video = fakes.pop("intro_video", None) or FakeIntro()
        self.credentials = fakes.pop("credentials", None) or FakeCredentials()
        self.publisher = fakes.pop("publisher", None) or FakePublisher()
        self.topic_history = fakes.pop("topic_history", None) or FakeHistory()
        self.renderer = fakes.pop("renderer", None) or FakeRenderer()
        self.controller = StageController(
            discovery=self.discovery,
            script_writer=self.script_writer,
            thumbnails=self.thumbnails,
            voiceover=self.voiceover,
            storyboards=self.storyboards,
            intro_video=self.intro_video,
            credentials=self.credentials,
            publisher=self.publisher,
            topic_history=self.topic_history,
            renderer=self.renderer,
            retry_policy=RetryPolicy(sleep=self.sleep),
            scheduler=self.scheduler,
            rng=FixedRandom(rng_value),
            sleep=self.sleep,
            autonomous=autonomous,
            **fakes,
        )

    def messages(self, severity: Optional[str] = None) -> List[str]:
        return [
            entry.message
            for entry in self.controller.log.entries()
            if severity is None or entry.severity.value == severity
        ]


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def harness_factory():
    return Harness
