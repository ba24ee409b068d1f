from __future__ import annotations

import asyncio
import base64

import pytest

from conftest import make_plan, make_reply, make_scene
from genstudio.client import BackendError
from genstudio.config import Config
from genstudio.models import Avatar, GenerationMode, MessageRole, VideoSubMode
from genstudio.orchestrator import Orchestrator
from genstudio.plan import PlanState

START = b"\x89PNG start-frame"
END = b"\x89PNG end-frame"


@pytest.fixture
def orchestrator(backend, notices) -> Orchestrator:
    return Orchestrator(
        backend,
        config=Config(api_base_url="https://api.test"),
        notify=notices.append,
    )


def _titles(notices) -> list[str]:
    return [notice.title for notice in notices]


@pytest.mark.parametrize("staged", [[], [START]])
def test_frames_submission_needs_both_frames(orchestrator, backend, notices, staged):
    orchestrator.modes.set_mode(GenerationMode.VIDEO, VideoSubMode.FRAMES_TO_VIDEO)
    for data in staged:
        orchestrator.modes.attach("image/png", data)

    result = asyncio.run(orchestrator.send_message("A sunrise over the sea"))

    assert result is None
    assert backend.calls == []
    assert notices[-1].title == "Missing frames"
    assert [m.id for m in orchestrator.transcript] == ["welcome"]
    assert len(orchestrator.modes.staged_media) == len(staged)


def test_frames_are_sent_in_attachment_order(orchestrator, backend):
    orchestrator.modes.set_mode(GenerationMode.VIDEO, VideoSubMode.FRAMES_TO_VIDEO)
    orchestrator.modes.attach("image/png", START)
    orchestrator.modes.attach("image/jpeg", END)
    backend.generate_results.append(make_reply(mode="video"))

    message = asyncio.run(orchestrator.send_message("Morph between the frames"))

    assert message is not None
    _, payload = backend.calls[0]
    assert payload["mode"] == "video"
    assert payload["video_mode"] == "frames_to_video"
    assert payload["model"] == "veo-3.1-fast-generate-preview"
    assert payload["aspect_ratio"] == "16:9"
    assert payload["resolution"] == "720p"
    assert payload["start_frame"] == {
        "mime_type": "image/png",
        "data": base64.b64encode(START).decode("ascii"),
    }
    assert payload["end_frame"]["mime_type"] == "image/jpeg"
    assert "conversation_id" not in payload
    assert "images" not in payload


def test_references_and_extend_are_validated(orchestrator, backend, notices):
    orchestrator.modes.set_mode(GenerationMode.VIDEO, VideoSubMode.REFERENCES_TO_VIDEO)
    asyncio.run(orchestrator.send_message("A product shot"))
    assert notices[-1].title == "Missing references"

    orchestrator.modes.set_mode(GenerationMode.VIDEO, VideoSubMode.EXTEND_VIDEO)
    asyncio.run(orchestrator.send_message("Keep going"))
    assert notices[-1].title == "No video to extend"

    asyncio.run(orchestrator.send_message("   "))
    assert notices[-1].title == "Empty prompt"
    assert backend.calls == []


def test_reference_images_are_sent_as_list(orchestrator, backend):
    orchestrator.modes.set_mode(GenerationMode.VIDEO, VideoSubMode.REFERENCES_TO_VIDEO)
    for index in range(3):
        orchestrator.modes.attach("image/png", f"ref-{index}".encode())
    backend.generate_results.append(make_reply())

    asyncio.run(orchestrator.send_message("Use these references"))

    payload = backend.calls[0][1]
    assert [item["data"] for item in payload["reference_images"]] == [
        base64.b64encode(f"ref-{index}".encode()).decode("ascii") for index in range(3)
    ]


def test_extend_targets_video_from_transcript(orchestrator, backend, notices):
    backend.generate_results.append(make_reply(assets=[{
        "id": "vid-1",
        "type": "video",
        "url": "/media/vid-1.mp4",
        "uri": "gs://bucket/vid-1.mp4",
    }]))
    asyncio.run(orchestrator.send_message("A cat walking"))
    backend.generate_results.append(make_reply(message_id="msg-2"))

    orchestrator.extend_video("vid-1")
    assert notices[-1].title == "Extend Video Mode"
    asyncio.run(orchestrator.send_message("The cat jumps"))

    payload = backend.calls[-1][1]
    assert payload["video_mode"] == "extend_video"
    assert payload["input_video"] == {"uri": "gs://bucket/vid-1.mp4"}
    assert orchestrator.modes.extend_target_uri is None
    assert orchestrator.modes.mode == GenerationMode.AUTO


def test_extend_rejects_assets_without_uri(orchestrator, backend):
    backend.generate_results.append(make_reply(assets=[
        {"id": "img-1", "type": "image", "url": "/media/img-1.png"},
    ]))
    asyncio.run(orchestrator.send_message("A cat"))

    with pytest.raises(ValueError):
        orchestrator.extend_video("img-1")
    with pytest.raises(KeyError):
        orchestrator.extend_video("missing")


def test_conversation_id_is_adopted_once(backend, notices):
    changes = []
    orchestrator = Orchestrator(
        backend,
        config=Config(api_base_url="https://api.test"),
        notify=notices.append,
        on_conversation_changed=changes.append,
    )
    backend.generate_results.extend([
        make_reply(message_id="msg-1", conversation_id="conv-1"),
        make_reply(message_id="msg-2", conversation_id="conv-1"),
    ])

    async def run():
        await orchestrator.send_message("First")
        await orchestrator.send_message("Second")

    asyncio.run(run())

    assert changes == ["conv-1"]
    assert orchestrator.conversation_id == "conv-1"
    assert "conversation_id" not in backend.calls[0][1]
    assert backend.calls[1][1]["conversation_id"] == "conv-1"
    assert "get_conversation" not in backend.call_names()
    ids = [message.id for message in orchestrator.transcript]
    assert len(ids) == 5
    assert ids.count("msg-1") == 1 and ids.count("msg-2") == 1


def test_failure_keeps_user_message_and_composer_state(orchestrator, backend, notices):
    orchestrator.modes.set_mode(GenerationMode.VIDEO, VideoSubMode.FRAMES_TO_VIDEO)
    orchestrator.modes.attach("image/png", START)
    orchestrator.modes.attach("image/png", END)
    backend.generate_results.append(BackendError(500, "quota exhausted"))

    result = asyncio.run(orchestrator.send_message("Try this"))

    assert result is None
    last = orchestrator.transcript.messages[-1]
    assert last.role == MessageRole.USER and last.content == "Try this"
    assert orchestrator.modes.mode == GenerationMode.VIDEO
    assert orchestrator.modes.video_sub_mode == VideoSubMode.FRAMES_TO_VIDEO
    assert len(orchestrator.modes.staged_media) == 2
    assert orchestrator.is_generating is False
    assert notices[-1].title == "Generation failed"
    assert notices[-1].description == "quota exhausted"
    assert notices[-1].is_error


def test_in_flight_request_blocks_new_submission(orchestrator, backend, notices):
    orchestrator.is_generating = True

    assert asyncio.run(orchestrator.send_message("Hello")) is None
    assert backend.calls == []
    assert notices[-1].title == "Please wait"


def test_image_mode_persists_and_video_mode_resets(orchestrator, backend):
    backend.generate_results.extend([make_reply(message_id="m1"), make_reply(message_id="m2")])

    orchestrator.modes.set_mode(GenerationMode.IMAGE)
    orchestrator.modes.attach("image/png", START)
    asyncio.run(orchestrator.send_message("A red fox"))
    assert orchestrator.modes.mode == GenerationMode.IMAGE
    assert orchestrator.modes.staged_media == []
    assert len(backend.calls[0][1]["images"]) == 1

    orchestrator.modes.set_mode(GenerationMode.VIDEO)
    asyncio.run(orchestrator.send_message("A red fox running"))
    assert orchestrator.modes.mode == GenerationMode.AUTO
    assert orchestrator.modes.video_sub_mode == VideoSubMode.TEXT_TO_VIDEO


def test_avatar_is_attached_only_where_supported(backend, notices):
    orchestrator = Orchestrator(
        backend,
        notify=notices.append,
        avatar_provider=lambda: Avatar(id="av-1", name="Ava", url="https://cdn/ava.png"),
    )

    orchestrator.modes.set_mode(GenerationMode.TEXT)
    assert "avatar_id" not in orchestrator.build_payload("hi")

    orchestrator.modes.set_mode(GenerationMode.IMAGE)
    assert orchestrator.build_payload("hi")["avatar_id"] == "av-1"

    orchestrator.modes.set_mode(GenerationMode.VIDEO)
    assert orchestrator.build_payload("hi")["avatar_id"] == "av-1"

    orchestrator.modes.set_video_model("veo-3.0-generate-001")
    assert "avatar_id" not in orchestrator.build_payload("hi")


def test_session_cost_accumulates_then_prefers_server_total(orchestrator, backend):
    backend.generate_results.extend([
        make_reply(
            message_id="m1",
            usage={"prompt_tokens": 60, "completion_tokens": 40, "total_tokens": 100},
            cost={"total_cost": 0.01},
        ),
        make_reply(
            message_id="m2",
            usage={"prompt_tokens": 10, "completion_tokens": 10, "total_tokens": 20},
            cost={"total_cost": 0.02},
        ),
        make_reply(
            message_id="m3",
            cost={"total_cost": 0.05},
            session_cost={"total_cost": 0.5, "total_tokens": 900},
        ),
    ])

    async def run():
        await orchestrator.send_message("one")
        await orchestrator.send_message("two")
        await orchestrator.send_message("three")

    asyncio.run(run())

    session = orchestrator.transcript.session_cost
    assert session.total_cost == pytest.approx(0.5)
    assert session.total_tokens == 900
    assert orchestrator.transcript.message("m1").usage.total_tokens == 100


def test_plan_reply_opens_review(orchestrator, backend, notices):
    orchestrator.modes.set_mode(GenerationMode.PLAN)
    backend.generate_results.append(make_reply(
        message_id="plan-msg",
        mode="plan",
        execution_plan=make_plan(make_scene("scene_1"), make_scene("scene_2")),
    ))

    message = asyncio.run(orchestrator.send_message("A two-scene teaser"))

    payload = backend.calls[0][1]
    assert payload["mode"] == "plan"
    assert payload["script"] == "A two-scene teaser"
    assert message.has_pending_plan
    review = orchestrator.plan_review
    assert review.message_id == "plan-msg"
    assert review.state == PlanState.PROPOSED
    assert review.proposed.scene_ids == ["scene_1", "scene_2"]
    assert orchestrator.modes.mode == GenerationMode.AUTO
    assert notices[-1].title == "Generated!"


def test_reply_after_conversation_switch_is_not_merged(orchestrator, backend, notices):
    backend.generate_results.append(make_reply())

    async def run():
        task = asyncio.create_task(orchestrator.send_message("Slow request"))
        await asyncio.sleep(0)
        orchestrator.new_conversation()
        return await task

    assert asyncio.run(run()) is None
    assert [m.id for m in orchestrator.transcript] == ["welcome"]
    assert orchestrator.conversation_id is None
    assert "Generated!" not in _titles(notices)


def test_reply_with_broken_plan_is_still_merged(orchestrator, backend, notices):
    orchestrator.modes.set_mode(GenerationMode.PLAN)
    backend.generate_results.append(make_reply(
        message_id="plan-msg",
        conversation_id="conv-new",
        execution_plan=make_plan(make_scene("s1", dependencies=["s9"])),
    ))

    message = asyncio.run(orchestrator.send_message("A teaser"))

    assert message is not None
    assert orchestrator.conversation_id == "conv-new"
    assert orchestrator.transcript.messages[-1] is message
    assert orchestrator.plan_review is None
    assert _titles(notices)[-2:] == ["Invalid plan", "Generated!"]
    assert "unknown scene 's9'" in notices[-2].description


def test_unreadable_reply_does_not_adopt_conversation(backend, notices):
    changes = []
    orchestrator = Orchestrator(
        backend,
        notify=notices.append,
        on_conversation_changed=changes.append,
    )
    orchestrator.modes.set_mode(GenerationMode.VIDEO)
    reply = make_reply(conversation_id="conv-x")
    reply["message"]["content"] = None
    backend.generate_results.append(reply)

    assert asyncio.run(orchestrator.send_message("A wave")) is None

    assert orchestrator.conversation_id is None
    assert changes == []
    assert orchestrator.modes.mode == GenerationMode.VIDEO
    assert notices[-1].description == "The server returned an unreadable message."
