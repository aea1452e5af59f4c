"""
Stage controller – single responsibility: sequence research → script → assets →
(review | render → upload) → completed for one Run at a time.
Depends only on port interfaces.

Every mid-pipeline decision reads the synchronous shadow cells (AssetStore,
StateCell); observers only ever see asynchronous copies.
"""

import asyncio
import logging
import random
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

from viraltube.application.events import EventLog
from viraltube.application.retry import RetryPolicy
from viraltube.application.scheduler import TaskScheduler
from viraltube.application.state import AssetStore, StateCell
from viraltube.domain.errors import GenerationError
from viraltube.domain.models import (
    STARTABLE_STAGES,
    AssetBundle,
    AssetPatch,
    Run,
    Script,
    Stage,
    Topic,
)
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

logger = logging.getLogger(__name__)

AUTH_FAILURE_SIGNATURES = ("401", "auth", "unauthenticated", "invalid_grant")


@dataclass
class PipelineTimings:
    """Fixed delays (seconds) and storyboard sizing."""

    research_retry_delay: float = 30.0
    settle_delay: float = 3.0
    loop_restart_delay: float = 10.0
    storyboard_target: int = 20
    storyboard_cap: int = 40
    live_search_share: float = 0.3


def select_topic(candidates: Sequence[Topic]) -> Optional[Topic]:
    """Highest virality wins; ties go to the first candidate in source order."""
    best: Optional[Topic] = None
    for candidate in candidates or []:
        if best is None or candidate.virality_score > best.virality_score:
            best = candidate
    return best


def plan_storyboard(
    supplied: Sequence[str],
    outline: Sequence[str],
    target: int = 20,
    cap: int = 40,
) -> List[str]:
    """Scenes to generate so that supplied + generated reaches `target` images."""
    shortfall = target - len(supplied)
    if shortfall <= 0:
        return []
    return list(outline[:min(shortfall, cap)])


def is_auth_failure(exc: BaseException) -> bool:
    msg = str(exc).lower()
    return any(sig in msg for sig in AUTH_FAILURE_SIGNATURES)


def parse_custom_script(text: str) -> Tuple[Topic, Script]:
    """Turn user-provided narration into a Script plus a synthetic Topic."""
    content = (text or "").strip()
    if not content:
        raise ValueError("custom script is empty")

    lines = content.split("\n")
    title = lines[0].strip() or "Custom Video"

    match = re.search(r"[^.!?]*[.!?]", content)
    hook = match.group(0).strip() if match else title

    paragraphs = [p.strip() for p in content.split("\n\n") if p.strip()]
    outline = [f"Scene {i}: {p[:50]}..." for i, p in enumerate(paragraphs[:10], start=1)]

    script = Script(
        title=title,
        thumbnail_text=title[:30],
        description=f"{title} - Custom content created with ViralTube Agent.",
        tags=["custom", "video", "content"],
        hook=hook,
        full_script_outline=outline or ["Custom script content"],
        full_script_content=content,
    )
    topic = Topic(
        id=f"custom-{int(time.time() * 1000)}",
        headline=title,
        category="Custom",
        virality_score=100,
        description="User-provided custom script",
        sources=[],
    )
    return topic, script


class StageController:
    """
    Owns the live Run: its stage, topic, script, assets and log.
    All collaborators are injected (ports); no concrete implementations here.
    """

    def __init__(
        self,
        *,
        discovery: ITopicDiscovery,
        script_writer: IScriptWriter,
        thumbnails: IThumbnailGenerator,
        voiceover: IVoiceoverSynthesizer,
        storyboards: IStoryboardGenerator,
        intro_video: IIntroVideoGenerator,
        credentials: ICredentialProvider,
        publisher: IPublisher,
        topic_history: ITopicHistory,
        renderer: IVideoRenderer,
        retry_policy: Optional[RetryPolicy] = None,
        scheduler: Optional[TaskScheduler] = None,
        timings: Optional[PipelineTimings] = None,
        rng: Optional[random.Random] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        key_check: Optional[Callable[[], Awaitable[Any]]] = None,
        autonomous: bool = True,
        voice_id: str = "Puck",
    ):
        self._discovery = discovery
        self._script_writer = script_writer
        self._thumbnails = thumbnails
        self._voiceover = voiceover
        self._storyboards = storyboards
        self._intro = intro_video
        self._credentials = credentials
        self._publisher = publisher
        self._history = topic_history
        self._renderer = renderer
        self._sleep = sleep or asyncio.sleep
        self._retry = retry_policy or RetryPolicy(sleep=self._sleep)
        self._scheduler = scheduler or TaskScheduler(sleep=self._sleep)
        self._timings = timings or PipelineTimings()
        self._rng = rng or random.Random()
        self._key_check = key_check
        self._voice_id = voice_id

        self.log = EventLog()
        self.assets = AssetStore()
        self._stage: StateCell[Stage] = StateCell(Stage.IDLE)
        self._topic: StateCell[Optional[Topic]] = StateCell(None)
        self._script: StateCell[Optional[Script]] = StateCell(None)
        self._autonomous: StateCell[bool] = StateCell(bool(autonomous))
        self._uploaded_id: StateCell[Optional[str]] = StateCell(None)
        self._upload_progress: StateCell[int] = StateCell(0)
        self._custom_images: List[str] = []

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def stage(self) -> Stage:
        return self._stage.value

    @property
    def topic(self) -> Optional[Topic]:
        return self._topic.value

    @property
    def script(self) -> Optional[Script]:
        return self._script.value

    @property
    def autonomous(self) -> bool:
        return self._autonomous.value

    @property
    def scheduler(self) -> TaskScheduler:
        return self._scheduler

    @property
    def custom_images(self) -> List[str]:
        return list(self._custom_images)

    @property
    def can_start(self) -> bool:
        return self.stage in STARTABLE_STAGES

    @property
    def is_busy(self) -> bool:
        """True while closing the process would lose an in-flight Run."""
        return not self.can_start

    @property
    def run(self) -> Run:
        return Run(
            stage=self.stage,
            topic=self.topic,
            script=self.script,
            assets=self.assets.snapshot(),
            uploaded_id=self._uploaded_id.value,
            autonomous=self.autonomous,
            upload_progress=self._upload_progress.value,
        )

    def subscribe(self, observer: Callable[[Run], None]) -> Callable[[], None]:
        """Observe Run changes (asynchronously delivered)."""
        cells = (
            self._stage,
            self._topic,
            self._script,
            self._autonomous,
            self._uploaded_id,
            self._upload_progress,
            self.assets,
        )
        unsubscribers = [cell.subscribe(lambda _value: observer(self.run)) for cell in cells]

        def unsubscribe() -> None:
            for fn in unsubscribers:
                fn()

        return unsubscribe

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def set_autonomous(self, enabled: bool) -> None:
        self._autonomous.set(bool(enabled))
        self.log.info(f"Autonomous mode {'enabled' if enabled else 'disabled'}.")

    def add_custom_images(self, refs: Sequence[str]) -> int:
        """Queue externally supplied storyboard images for the next storyboard stage."""
        added = [str(ref) for ref in refs or [] if ref]
        self._custom_images.extend(added)
        return len(added)

    def remove_custom_image(self, index: int) -> str:
        return self._custom_images.pop(index)

    def select_thumbnail(self, url: str) -> None:
        if url not in self.assets.value.thumbnail_variants:
            raise ValueError(f"Unknown thumbnail variant: {url}")
        self.assets.apply(AssetPatch(thumbnail_url=url))
        self.log.info("Thumbnail variation selected.")

    async def start(
        self,
        manual_topic: Optional[str] = None,
        custom_script: Optional[str] = None,
    ) -> bool:
        """
        Begin a new Run. Rejected (returns False) unless the current stage is
        idle or completed. Runs until the cycle parks at review, completed or idle.
        """
        if not self.can_start:
            logger.info("Start ignored: a run is already active (stage=%s)", self.stage.value)
            return False

        self._scheduler.cancel_all()
        self._reset_run()

        if not self.autonomous and custom_script and custom_script.strip():
            if await self._start_from_custom_script(custom_script):
                return True

        await self._research(manual_topic)
        return True

    async def regenerate_thumbnails(self) -> bool:
        if self.stage != Stage.REVIEW:
            logger.info("Thumbnail regeneration is only available in review")
            return False
        topic, script = self.topic, self.script
        if topic is None or script is None:
            self.log.error("Cannot regenerate: missing topic or script data.")
            return False

        self.log.info("Regenerating thumbnail variations...")
        try:
            variants = await self._retry.call(
                self._thumbnails.make_thumbnails, topic.headline, script.title, script.thumbnail_text
            )
        except Exception as exc:
            self.log.error(f"Thumbnail regeneration failed: {exc}")
            return False

        variants = list(variants or [])
        self.assets.apply(
            AssetPatch(thumbnail_variants=variants, thumbnail_url=variants[0] if variants else None)
        )
        self.log.success(f"Generated {len(variants)} new thumbnail variations!")
        return True

    async def publish(self) -> bool:
        """Human confirmation from review: link the account if needed, then render and upload."""
        if self.stage != Stage.REVIEW:
            logger.info("Publish ignored: stage is %s", self.stage.value)
            return False

        # Confirmed publishes continue autonomously afterwards
        self._autonomous.set(True)

        try:
            linked = await self._credentials.has_credential()
        except Exception as exc:
            self.log.error(f"Could not read publishing credential: {exc}")
            return False

        if not linked:
            self._set_stage(Stage.CONNECTING)
            self.log.info("Connecting publishing account...")
            try:
                await self._credentials.select_credential()
                linked = await self._credentials.has_credential()
            except Exception as exc:
                self.log.error(f"Account linking failed: {exc}")
                self._set_stage(Stage.REVIEW)
                return False
            if not linked:
                self.log.error("Action required: publishing account is not linked.")
                self._set_stage(Stage.REVIEW)
                return False

        try:
            credential = await self._credentials.get_credential()
        except Exception as exc:
            self.log.error(f"Could not read publishing credential: {exc}")
            self._set_stage(Stage.REVIEW)
            return False
        return await self._render_and_publish(self.assets.snapshot(), self.script, credential)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _set_stage(self, stage: Stage) -> None:
        if stage != self._stage.value:
            logger.debug("Stage %s -> %s", self._stage.value.value, stage.value)
        self._stage.set(stage)

    def _reset_run(self) -> None:
        self._set_stage(Stage.RESEARCHING)
        self.log.reset()
        self._topic.set(None)
        self._script.set(None)
        self.assets.reset()
        self._uploaded_id.set(None)
        self._upload_progress.set(0)

    def _abort_run(self) -> None:
        self._topic.set(None)
        self._script.set(None)
        self.assets.reset()
        self._set_stage(Stage.IDLE)

    async def _start_from_custom_script(self, text: str) -> bool:
        self.log.success("CUSTOM SCRIPT: Skipping AI generation, using user-provided script.")
        try:
            topic, script = parse_custom_script(text)
        except ValueError as exc:
            self.log.error(f"Custom script parsing failed: {exc}. Falling back to auto.")
            return False

        self._topic.set(topic)
        self._script.set(script)
        self.log.success(f'Custom script loaded: "{script.title}"')
        await self._generate_assets(topic, script)
        return True

    async def _research(self, manual_topic: Optional[str] = None) -> None:
        self._set_stage(Stage.RESEARCHING)

        if manual_topic and manual_topic.strip() and not self.autonomous:
            concept = manual_topic.strip()
            self.log.success(f'MANUAL OVERRIDE: Using user topic -> "{concept}"')
            try:
                topics = await self._retry.call(self._discovery.discover, concept)
            except Exception as exc:
                self.log.error(f"Manual topic failed: {exc}. Falling back to auto.")
            else:
                selected = select_topic(topics)
                if selected is not None:
                    self.log.success(f'Generated concept for: "{concept}"')
                    await self._write_script(selected)
                    return
                self.log.warning("Manual topic produced no concepts. Falling back to auto.")

        self.log.info("Initializing viral trend detection module...")
        use_live_search = self._rng.random() < self._timings.live_search_share
        try:
            topics = await self._discover(use_live_search)
        except Exception as exc:
            self.log.error(f"Research failed: {exc}")
            self._abort_run()
            return

        selected = select_topic(topics)
        if selected is None:
            delay = self._timings.research_retry_delay
            self.log.warning(f"No trends found. Retrying in {delay:.0f}s...")
            self._scheduler.call_later(delay, self._research, "research-retry")
            return

        self.log.success(
            f'Selected high-potential topic: "{selected.headline}" (Virality: {selected.virality_score:g})'
        )
        await self._write_script(selected)

    async def _discover(self, use_live_search: bool) -> List[Topic]:
        if use_live_search:
            self.log.thinking("Strategy: LIVE TREND SEARCH (AI/Tech/News/Politics)...")
            return await self._retry.call(self._discovery.discover)

        curated = self._history.pick_unused()
        if curated is None:
            self.log.warning("Topic database exhausted. Falling back to live search.")
            return await self._retry.call(self._discovery.discover)

        self._history.mark_used(curated.id)
        self.log.info(f'Strategy: DATABASE TOPIC -> "{curated.headline}"')
        return await self._retry.call(self._discovery.discover, curated.headline)

    async def _write_script(self, topic: Topic) -> None:
        self._topic.set(topic)
        self._set_stage(Stage.SCRIPTING)
        self.log.thinking("Drafting full-length script and SEO metadata...")
        try:
            script = await self._retry.call(self._script_writer.write_script, topic)
        except Exception as exc:
            self.log.error(f"Scripting failed: {exc}")
            self._abort_run()
            return

        # Committed before the next stage starts; later stages read the cell
        self._script.set(script)
        self.log.success("Full script generated successfully. Starting asset production.")
        await self._generate_assets(topic, script)

    async def _generate_assets(self, topic: Topic, script: Script) -> None:
        self._set_stage(Stage.GENERATING_ASSETS)
        self.log.thinking("Initializing production pipelines...")

        if self._key_check is not None:
            try:
                await self._key_check()
            except Exception as exc:
                self.log.error(f"Failed to verify generation API key: {exc}")

        try:
            await self._make_thumbnails(topic, script)
            await self._make_voiceover(script)
            await self._make_storyboard(topic, script)
        except Exception as exc:
            self.log.error(f"Asset generation failed: {exc}")
            self._set_stage(Stage.REVIEW)
            return

        await self._make_intro(topic, script)
        self.log.success("All assets generated.")
        await self._decide_publish(script)

    async def _make_thumbnails(self, topic: Topic, script: Script) -> None:
        self.log.info("Generating thumbnail variations (A/B testing)...")
        variants = await self._retry.call(
            self._thumbnails.make_thumbnails, topic.headline, script.title, script.thumbnail_text
        )
        variants = list(variants or [])
        self.assets.apply(
            AssetPatch(thumbnail_variants=variants, thumbnail_url=variants[0] if variants else None)
        )

    async def _make_voiceover(self, script: Script) -> None:
        self.log.info("Synthesizing full voiceover (TTS)... This may take a moment.")
        audio_ref = await self._retry.call(
            self._voiceover.synthesize, script.full_script_content, self._voice_id
        )
        if not audio_ref:
            raise GenerationError("No audio generated", stage="voiceover")
        self.assets.apply(AssetPatch(audio_url=audio_ref))

    async def _make_storyboard(self, topic: Topic, script: Script) -> None:
        supplied = list(self._custom_images)
        target = self._timings.storyboard_target
        if supplied:
            self.log.success(f"Using {len(supplied)} custom images as storyboards...")

        scenes = plan_storyboard(supplied, script.full_script_outline, target, self._timings.storyboard_cap)
        if len(supplied) >= target:
            self.log.success(f"Custom images sufficient ({len(supplied)} images). Skipping AI generation.")
            storyboard = supplied
        elif not scenes:
            self.log.warning("Script outline is empty. No storyboard visuals generated.")
            storyboard = supplied
        else:
            self.log.info(f"Generating {len(scenes)} additional AI storyboard visuals...")
            generated = await self._retry.call_each(
                lambda scene: self._storyboards.generate_frame(topic.headline, scene),
                scenes,
            )
            storyboard = supplied + generated
            self.log.success(f"Generated {len(generated)} AI images. Total: {len(storyboard)}")

        self.assets.apply(AssetPatch(storyboard_urls=storyboard))

    async def _make_intro(self, topic: Topic, script: Script) -> None:
        self.log.info("Rendering video intro...")
        try:
            video_ref = await self._retry.call(self._intro.make_intro, topic.headline, script.hook)
        except Exception as exc:
            self.log.warning(f"Intro video generation failed ({exc}). Using thumbnail fallback.")
            self.assets.apply(AssetPatch(video_url=None))
            return
        self.assets.apply(AssetPatch(video_url=video_ref or None))

    async def _decide_publish(self, script: Script) -> None:
        autonomous = self.autonomous
        try:
            has_credential = await self._credentials.has_credential()
            credential = None
            if has_credential and autonomous:
                credential = await self._credentials.get_credential()
        except Exception as exc:
            self.log.error(f"Could not read publishing credential: {exc}")
            self._set_stage(Stage.REVIEW)
            return

        if has_credential and autonomous:
            self.log.info("Auto-loop engaged: skipping manual review.")
            self.log.thinking("Proceeding to render & upload...")
            payload = self.assets.snapshot()
            await self._sleep(self._timings.settle_delay)
            await self._render_and_publish(payload, script, credential)
        elif has_credential:
            self.log.info("Assets ready. Waiting for review.")
            self._set_stage(Stage.REVIEW)
        else:
            self.log.thinking("Publishing account not connected. Waiting for manual upload...")
            self._set_stage(Stage.REVIEW)

    async def _render_and_publish(
        self,
        assets: AssetBundle,
        script: Optional[Script],
        credential: Any,
    ) -> bool:
        if not assets.is_renderable(script):
            self.log.error(
                f"Missing essential assets. Audio: {'OK' if assets.audio_url else 'MISSING'}, "
                f"Script: {'OK' if script else 'MISSING'}."
            )
            self._set_stage(Stage.REVIEW)
            return False

        try:
            self._set_stage(Stage.RENDERING)
            self.log.info("Rendering video...")
            blob = await self._renderer.render(assets, script, on_progress=self.log.info)
            self.log.success("Render complete.")

            self._set_stage(Stage.UPLOADING)
            self._upload_progress.set(0)
            self.log.info("Uploading video...")
            video_id = await self._publisher.upload(
                blob,
                assets.thumbnail_url,
                script,
                credential,
                on_progress=self._on_upload_progress,
            )
        except Exception as exc:
            self.log.error(f"Process failed: {exc}")
            if is_auth_failure(exc):
                self.log.error("Authentication expired. Please re-link the publishing account.")
                try:
                    await self._credentials.clear()
                except Exception as clear_exc:
                    self.log.error(f"Could not clear stored credential: {clear_exc}")
            self._set_stage(Stage.REVIEW)
            return False

        self._uploaded_id.set(video_id)
        self._upload_progress.set(100)
        self.log.success(f"Video uploaded! ID: {video_id}")
        self._set_stage(Stage.COMPLETED)

        if self.autonomous:
            delay = self._timings.loop_restart_delay
            self.log.info(f"Autonomous mode: restarting cycle in {delay:.0f} seconds...")
            self._scheduler.call_later(delay, self._auto_restart, "auto-loop")
        return True

    def _on_upload_progress(self, percent: int) -> None:
        self._upload_progress.set(max(0, min(100, int(percent))))

    async def _auto_restart(self) -> None:
        if not self.autonomous:
            self.log.info("Autonomous mode disabled. Not restarting.")
            return
        await self.start()
