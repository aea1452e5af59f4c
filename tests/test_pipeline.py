"""
Tests for the stage controller: stage transitions, fallbacks and the
stale-state rules, all against in-memory fakes.
"""

from __future__ import annotations

import pytest

from conftest import (
    FakeCredentials,
    FakeDiscovery,
    FakeHistory,
    FakeIntro,
    FakePublisher,
    FakeScriptWriter,
    FakeStoryboards,
    FakeThumbnails,
    FakeVoiceover,
    Harness,
    make_script,
    make_topic,
)
from viraltube.application.pipeline import (
    is_auth_failure,
    parse_custom_script,
    plan_storyboard,
    select_topic,
)
from viraltube.domain.errors import PublishError
from viraltube.domain.models import AssetPatch, Stage


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------


def test_select_topic_prefers_highest_virality_and_first_on_ties():
    a = make_topic("a", score=80)
    b = make_topic("b", score=95)
    c = make_topic("c", score=95)
    assert select_topic([a, b, c]).id == "b"
    assert select_topic([]) is None


def test_plan_storyboard_requests_only_the_shortfall():
    outline = [f"scene {i}" for i in range(30)]
    assert plan_storyboard([f"img{i}" for i in range(20)], outline) == []
    assert plan_storyboard(["a", "b", "c"], outline) == outline[:17]
    assert plan_storyboard([], outline[:5]) == outline[:5]


def test_parse_custom_script_builds_topic_and_script():
    text = "Karna Real Story\nHe was born a prince. Raised by a charioteer!\n\nSecond part of the tale."
    topic, script = parse_custom_script(text)

    assert topic.category == "Custom"
    assert topic.virality_score == 100
    assert topic.id.startswith("custom-")
    assert script.title == "Karna Real Story"
    assert script.thumbnail_text == "Karna Real Story"
    assert script.hook.endswith(".")
    assert len(script.full_script_outline) == 2
    assert script.full_script_content == text.strip()


def test_parse_custom_script_rejects_empty_text():
    with pytest.raises(ValueError):
        parse_custom_script("   ")


def test_is_auth_failure_signatures():
    assert is_auth_failure(PublishError("401 Unauthorized"))
    assert is_auth_failure(Exception("invalid_grant: token revoked"))
    assert not is_auth_failure(Exception("500 backend error"))


# ----------------------------------------------------------------------
# Happy path and auto-publish decision
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_autonomous_run_with_credential_completes_without_review():
    h = Harness()

    started = await h.controller.start()

    assert started is True
    assert h.controller.stage == Stage.COMPLETED
    assert h.controller.run.uploaded_id == "vid-1"
    assert h.controller.run.upload_progress == 100
    assert not any("Waiting for review" in m for m in h.messages())
    assert 3 in h.sleep.delays
    assert h.scheduler.scheduled == [
        {"delay": 10, "factory": h.scheduler.scheduled[0]["factory"], "name": "auto-loop"}
    ]

    rendered = h.renderer.calls[0]["assets"]
    assert rendered.audio_url == "narration.wav"
    assert rendered.thumbnail_url == "thumb-a.png"
    assert rendered.video_url == "intro.mp4"
    assert rendered is not h.controller.assets.value
    assert h.publisher.calls[0]["credential"] == "token"
    assert h.publisher.calls[0]["thumbnail"] == "thumb-a.png"


@pytest.mark.asyncio
async def test_auto_publish_payload_is_captured_before_settle_delay():
    h = Harness()
    h.sleep.on(3, lambda: h.controller.assets.apply(AssetPatch(audio_url=None)))

    await h.controller.start()

    assert h.controller.assets.value.audio_url is None
    assert h.renderer.calls[0]["assets"].audio_url == "narration.wav"
    assert h.controller.stage == Stage.COMPLETED


@pytest.mark.asyncio
async def test_unreadable_credential_parks_in_review_with_error():
    h = Harness(credentials=FakeCredentials(error=EOFError("Ran out of input")))

    assert await h.controller.start() is True

    assert h.controller.stage == Stage.REVIEW
    assert h.renderer.calls == []
    assert any("Could not read publishing credential" in m for m in h.messages("error"))

    h.credentials.error = None
    assert await h.controller.publish() is True
    assert h.controller.stage == Stage.COMPLETED


@pytest.mark.asyncio
async def test_failing_log_observer_does_not_disturb_the_run():
    h = Harness()

    def observer(entry):
        if "voiceover" in entry.message:
            raise RuntimeError("ui crashed")

    h.controller.log.subscribe(observer)
    await h.controller.start()

    assert h.controller.stage == Stage.COMPLETED
    assert not h.messages("error")


@pytest.mark.asyncio
async def test_assets_are_accumulated_without_clobbering():
    h = Harness(credentials=FakeCredentials(linked=False))

    await h.controller.start()

    assets = h.controller.assets.value
    assert assets.thumbnail_variants == ["thumb-a.png", "thumb-b.png"]
    assert assets.thumbnail_url == "thumb-a.png"
    assert assets.audio_url == "narration.wav"
    assert len(assets.storyboard_urls) == 20
    assert assets.video_url == "intro.mp4"


@pytest.mark.asyncio
async def test_without_credential_run_stops_at_review_and_never_uploads():
    h = Harness(credentials=FakeCredentials(linked=False))

    await h.controller.start()

    assert h.controller.stage == Stage.REVIEW
    assert h.renderer.calls == []
    assert h.publisher.calls == []
    assert h.scheduler.scheduled == []
    assert any("not connected" in m for m in h.messages("thinking"))


@pytest.mark.asyncio
async def test_manual_mode_with_credential_waits_for_review():
    h = Harness(autonomous=False)

    await h.controller.start()

    assert h.controller.stage == Stage.REVIEW
    assert h.renderer.calls == []


@pytest.mark.asyncio
async def test_intro_failure_is_recoverable_and_render_still_happens():
    h = Harness(intro_video=FakeIntro(error=RuntimeError("veo rejected prompt")))

    await h.controller.start()

    assert h.intro_video.calls == 1
    assert h.controller.assets.value.video_url is None
    assert h.controller.stage == Stage.COMPLETED
    assert h.renderer.calls[0]["assets"].video_url is None
    assert any("Intro video generation failed" in m for m in h.messages("warning"))
    assert not h.messages("error")


@pytest.mark.asyncio
async def test_transient_intro_failure_exhausts_retry_budget():
    h = Harness(intro_video=FakeIntro(error=RuntimeError("503 model overloaded")))

    await h.controller.start()

    assert h.intro_video.calls == 3
    assert h.controller.stage == Stage.COMPLETED
    assert h.controller.assets.value.video_url is None


@pytest.mark.asyncio
async def test_auth_error_on_upload_clears_credential_and_returns_to_review():
    h = Harness(publisher=FakePublisher(error=PublishError("401 Unauthorized: invalid credentials")))

    await h.controller.start()

    assert h.controller.stage == Stage.REVIEW
    assert h.credentials.cleared is True
    assert h.controller.run.uploaded_id is None
    errors = h.messages("error")
    assert any("Process failed" in m for m in errors)
    assert any("re-link" in m for m in errors)
    assert h.scheduler.scheduled == []


@pytest.mark.asyncio
async def test_render_failure_keeps_credential_and_returns_to_review():
    from conftest import FakeRenderer

    h = Harness(renderer=FakeRenderer(error=RuntimeError("encoder crashed")))

    await h.controller.start()

    assert h.controller.stage == Stage.REVIEW
    assert h.credentials.cleared is False
    assert h.publisher.calls == []


# ----------------------------------------------------------------------
# Start guard and reset
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_start_is_rejected_outside_idle_and_completed():
    h = Harness(credentials=FakeCredentials(linked=False))
    await h.controller.start()
    assert h.controller.stage == Stage.REVIEW
    calls_before = len(h.discovery.calls)

    assert await h.controller.start() is False
    assert h.controller.stage == Stage.REVIEW
    assert len(h.discovery.calls) == calls_before


@pytest.mark.asyncio
async def test_start_resets_previous_run_and_cancels_continuations():
    seen = {}
    h = Harness()

    def on_script(topic):
        seen["assets"] = h.controller.assets.value
        seen["uploaded_id"] = h.controller.run.uploaded_id

    await h.controller.start()
    assert h.controller.stage == Stage.COMPLETED
    assert h.scheduler.pending() == ["auto-loop"]

    h.script_writer.on_call = on_script
    assert await h.controller.start() is True

    assert h.scheduler.cancel_calls == 2
    assert seen["assets"].audio_url is None
    assert seen["assets"].storyboard_urls == []
    assert seen["uploaded_id"] is None


@pytest.mark.asyncio
async def test_auto_restart_rechecks_autonomous_flag_when_it_fires():
    h = Harness()
    await h.controller.start()
    calls_before = len(h.discovery.calls)

    h.controller.set_autonomous(False)
    await h.scheduler.fire("auto-loop")

    assert len(h.discovery.calls) == calls_before
    assert h.controller.stage == Stage.COMPLETED


@pytest.mark.asyncio
async def test_auto_restart_starts_a_fresh_cycle():
    h = Harness()
    await h.controller.start()

    await h.scheduler.fire("auto-loop")

    assert len(h.discovery.calls) == 2
    assert len(h.publisher.calls) == 2
    assert h.controller.stage == Stage.COMPLETED


# ----------------------------------------------------------------------
# Research and scripting failures
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_zero_candidates_schedules_research_retry():
    h = Harness(discovery=FakeDiscovery(topics=[]))

    await h.controller.start()

    assert h.controller.stage == Stage.RESEARCHING
    assert [(s["name"], s["delay"]) for s in h.scheduler.scheduled] == [("research-retry", 30)]
    assert any("No trends found" in m for m in h.messages("warning"))

    h.discovery.topics = [make_topic()]
    await h.scheduler.fire("research-retry")
    assert h.controller.stage == Stage.COMPLETED


@pytest.mark.asyncio
async def test_research_failure_returns_to_idle():
    h = Harness(discovery=FakeDiscovery(error=ValueError("malformed JSON")))

    await h.controller.start()

    assert h.controller.stage == Stage.IDLE
    assert h.controller.topic is None
    assert h.discovery.calls == [None]
    assert any("Research failed" in m for m in h.messages("error"))
    assert h.controller.can_start


@pytest.mark.asyncio
async def test_script_failure_returns_to_idle_and_clears_partial_run():
    h = Harness(script_writer=FakeScriptWriter(error=ValueError("schema mismatch")))

    await h.controller.start()

    assert h.controller.stage == Stage.IDLE
    assert h.controller.topic is None
    assert h.controller.script is None
    assert h.thumbnails.calls == []


@pytest.mark.asyncio
async def test_fatal_thumbnail_failure_parks_in_review():
    h = Harness(thumbnails=FakeThumbnails(error=RuntimeError("safety block")))

    await h.controller.start()

    assert h.controller.stage == Stage.REVIEW
    assert h.voiceover.calls == []
    assert h.controller.script is not None
    assert any("Asset generation failed" in m for m in h.messages("error"))


@pytest.mark.asyncio
async def test_empty_voiceover_is_fatal():
    h = Harness(voiceover=FakeVoiceover(ref=""))

    await h.controller.start()

    assert h.controller.stage == Stage.REVIEW
    assert h.storyboards.calls == []
    assert h.controller.assets.value.thumbnail_url == "thumb-a.png"


@pytest.mark.asyncio
async def test_key_check_failure_is_logged_and_production_continues():
    async def failing_check():
        raise RuntimeError("no key")

    h = Harness(key_check=failing_check)

    await h.controller.start()

    assert h.controller.stage == Stage.COMPLETED
    assert any("API key" in m for m in h.messages("error"))


# ----------------------------------------------------------------------
# Topic strategies
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_database_strategy_marks_topic_used_and_forces_concept():
    curated = make_topic("db-7", headline="Barbarika")
    h = Harness(rng_value=0.9, topic_history=FakeHistory(curated))

    await h.controller.start()

    assert h.topic_history.marked == ["db-7"]
    assert h.discovery.calls == ["Barbarika"]


@pytest.mark.asyncio
async def test_exhausted_database_falls_back_to_live_search():
    h = Harness(rng_value=0.9, topic_history=FakeHistory(None))

    await h.controller.start()

    assert h.topic_history.picks == 1
    assert h.discovery.calls == [None]


@pytest.mark.asyncio
async def test_manual_topic_is_used_when_not_autonomous():
    topics = [make_topic("a", "A", 88), make_topic("b", "B", 97)]
    h = Harness(autonomous=False, discovery=FakeDiscovery(topics=topics))

    await h.controller.start(manual_topic="  Karna  ")

    assert h.discovery.calls == ["Karna"]
    assert h.controller.topic.id == "b"
    assert h.topic_history.picks == 0


@pytest.mark.asyncio
async def test_manual_topic_is_ignored_in_autonomous_mode():
    h = Harness(autonomous=True)

    await h.controller.start(manual_topic="Karna")

    assert h.discovery.calls == [None]


@pytest.mark.asyncio
async def test_custom_script_skips_research_and_scripting():
    h = Harness(autonomous=False)

    await h.controller.start(custom_script="My Title\nFirst sentence here. Then more.\n\nPart two.")

    assert h.discovery.calls == []
    assert h.script_writer.calls == []
    assert h.controller.topic.category == "Custom"
    assert h.controller.script.title == "My Title"
    assert h.controller.stage == Stage.REVIEW


# ----------------------------------------------------------------------
# Storyboard shortfall rule
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_enough_supplied_images_skip_generation():
    h = Harness(credentials=FakeCredentials(linked=False))
    supplied = [f"custom-{i}.png" for i in range(20)]
    h.controller.add_custom_images(supplied)

    await h.controller.start()

    assert h.storyboards.calls == []
    assert h.controller.assets.value.storyboard_urls == supplied


@pytest.mark.asyncio
async def test_shortfall_is_generated_after_supplied_images():
    h = Harness(credentials=FakeCredentials(linked=False))
    supplied = [f"custom-{i}.png" for i in range(5)]
    h.controller.add_custom_images(supplied)

    await h.controller.start()

    assert len(h.storyboards.calls) == 15
    expected = supplied + [f"gen-scene {i}.png" for i in range(15)]
    assert h.controller.assets.value.storyboard_urls == expected
    assert h.sleep.delays.count(1.2) == 7


@pytest.mark.asyncio
async def test_failed_storyboard_frames_are_omitted():
    failing = {"scene 3": RuntimeError("image blocked"), "scene 4": RuntimeError("429 quota")}
    h = Harness(credentials=FakeCredentials(linked=False), storyboards=FakeStoryboards(failing))

    await h.controller.start()

    urls = h.controller.assets.value.storyboard_urls
    assert len(urls) == 18
    assert "gen-scene 3.png" not in urls
    assert h.storyboards.calls.count("scene 3") == 1
    assert h.storyboards.calls.count("scene 4") == 2
    assert h.controller.stage == Stage.REVIEW


@pytest.mark.asyncio
async def test_empty_outline_produces_no_storyboard():
    h = Harness(
        credentials=FakeCredentials(linked=False),
        script_writer=FakeScriptWriter(script=make_script(scene_count=0)),
    )

    await h.controller.start()

    assert h.storyboards.calls == []
    assert h.controller.assets.value.storyboard_urls == []
    assert h.controller.stage == Stage.REVIEW


# ----------------------------------------------------------------------
# Review operations
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_publish_from_review_links_account_then_uploads():
    stages = []
    h = Harness(autonomous=False, credentials=FakeCredentials(linked=False))
    h.credentials.on_select = lambda: stages.append(h.controller.stage)

    await h.controller.start()
    assert h.controller.stage == Stage.REVIEW

    assert await h.controller.publish() is True

    assert stages == [Stage.CONNECTING]
    assert h.controller.stage == Stage.COMPLETED
    assert h.controller.autonomous is True
    assert h.scheduler.pending() == ["auto-loop"]


@pytest.mark.asyncio
async def test_publish_returns_to_review_when_linking_declined():
    h = Harness(autonomous=False, credentials=FakeCredentials(linked=False, grant_on_select=False))
    await h.controller.start()

    assert await h.controller.publish() is False

    assert h.controller.stage == Stage.REVIEW
    assert h.publisher.calls == []
    assert any("not linked" in m for m in h.messages("error"))


@pytest.mark.asyncio
async def test_publish_with_unreadable_credential_stays_in_review():
    h = Harness(autonomous=False)
    await h.controller.start()
    h.credentials.error = EOFError("Ran out of input")

    assert await h.controller.publish() is False

    assert h.controller.stage == Stage.REVIEW
    assert h.publisher.calls == []
    assert any("Could not read publishing credential" in m for m in h.messages("error"))


@pytest.mark.asyncio
async def test_publish_outside_review_is_ignored():
    h = Harness()
    assert await h.controller.publish() is False
    assert h.controller.stage == Stage.IDLE


@pytest.mark.asyncio
async def test_publish_with_missing_audio_is_rejected_before_rendering():
    h = Harness(autonomous=False)
    await h.controller.start()
    h.controller.assets.apply(AssetPatch(audio_url=None))

    assert await h.controller.publish() is False

    assert h.renderer.calls == []
    assert h.controller.stage == Stage.REVIEW
    assert any("Missing essential assets" in m for m in h.messages("error"))


@pytest.mark.asyncio
async def test_select_thumbnail_only_accepts_known_variants():
    h = Harness(autonomous=False)
    await h.controller.start()

    h.controller.select_thumbnail("thumb-b.png")
    assert h.controller.assets.value.thumbnail_url == "thumb-b.png"

    with pytest.raises(ValueError):
        h.controller.select_thumbnail("other.png")


@pytest.mark.asyncio
async def test_regenerate_thumbnails_in_review():
    h = Harness(autonomous=False)
    await h.controller.start()
    h.thumbnails.variants = ["new-1.png"]

    assert await h.controller.regenerate_thumbnails() is True

    assert h.controller.assets.value.thumbnail_variants == ["new-1.png"]
    assert h.controller.assets.value.thumbnail_url == "new-1.png"
    assert h.controller.assets.value.audio_url == "narration.wav"


def test_custom_images_can_be_removed():
    h = Harness()
    h.controller.add_custom_images(["a.png", "", "b.png"])
    assert h.controller.custom_images == ["a.png", "b.png"]
    assert h.controller.remove_custom_image(0) == "a.png"
    assert h.controller.custom_images == ["b.png"]


@pytest.mark.asyncio
async def test_busy_flag_tracks_active_run():
    h = Harness(credentials=FakeCredentials(linked=False))
    assert h.controller.is_busy is False

    await h.controller.start()

    assert h.controller.stage == Stage.REVIEW
    assert h.controller.is_busy is True
