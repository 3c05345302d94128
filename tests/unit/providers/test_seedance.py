"""Unit tests for SeedanceClient."""

import json

import httpx
import pytest

from cinegenius.video_dispatch.exceptions import (
    GenerationFailedError,
    IncompatibleRequestError,
)
from cinegenius.video_dispatch.models import GenerationRequest
from cinegenius.video_dispatch.providers.seedance import SeedanceClient, camera_motion_for

BASE_URL = "https://api.seedance.bytedance.com/v2"


def seedance_job(job_id="sd-1", status="queued", **overrides):
    payload = {
        "job_id": job_id,
        "status": status,
        "progress": 0,
        "created_at": "2026-03-10T12:00:00Z",
        "updated_at": "2026-03-10T12:00:02Z",
    }
    payload.update(overrides)
    return payload


def respond_with(*responses):
    """Handler replaying ``responses`` in order, repeating the last one."""
    queue = list(responses)
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        return response

    handler.requests = seen
    return handler


@pytest.mark.parametrize(
    "motion_level,expected",
    [
        (0.0, "static"),
        (0.19, "static"),
        (0.2, "zoom_in"),
        (0.5, "pan_right"),
        (0.7, "dolly_in"),
        (0.8, "zoom_out"),
        (1.0, "zoom_out"),
    ],
)
def test_camera_motion_for(motion_level, expected):
    assert camera_motion_for(motion_level) == expected


def test_cost_estimate_scales_with_motion():
    still = GenerationRequest(
        prompt="p", image_url="https://img", duration_seconds=5, motion_level=0.0
    )
    wild = still.model_copy(update={"motion_level": 1.0, "quality": "high"})

    assert SeedanceClient.estimate_cost(still) == pytest.approx(0.03)
    assert SeedanceClient.estimate_cost(wild) == pytest.approx(0.03 * 1.3 * 1.5)


@pytest.mark.asyncio
async def test_generate_translates_request(make_client):
    handler = respond_with(httpx.Response(200, json=seedance_job()))
    client = make_client(SeedanceClient, handler)
    request = GenerationRequest(
        prompt="Paper cranes taking flight",
        image_url="https://example.com/cranes.png",
        duration_seconds=6,
        quality="high",
        style="animation",
        aspect_ratio="1:1",
        fps=60,
        negative_prompt="blurry",
        motion_level=0.5,
    )

    job = await client.generate_video(request)

    assert job.id == "sd-1"
    assert job.status == "pending"
    assert job.style == "animation"

    sent = handler.requests[0]
    assert str(sent.url) == f"{BASE_URL}/video/i2v/generate"
    body = json.loads(sent.content)
    assert body["image_url"] == "https://example.com/cranes.png"
    assert body["camera_motion"] == "pan_right"
    assert body["style"] == "animated"
    assert body["resolution"] == "768x768"
    assert body["fps"] == 30
    assert body["negative_prompt"] == "blurry"
    assert body["model"] == "seedance-v2"
    assert "seed" not in body


@pytest.mark.asyncio
async def test_text_to_video_is_incompatible(make_client, t2v_request):
    handler = respond_with(httpx.Response(200, json=seedance_job()))
    client = make_client(SeedanceClient, handler)

    with pytest.raises(IncompatibleRequestError) as exc_info:
        await client.generate_video(t2v_request)

    assert "text-to-video not supported" in exc_info.value.reasons
    assert handler.requests == []


@pytest.mark.asyncio
async def test_reported_cost_reconciles_guard(make_client, i2v_request):
    handler = respond_with(httpx.Response(200, json=seedance_job(cost=0.05)))
    client = make_client(SeedanceClient, handler)

    job = await client.generate_video(i2v_request)

    assert job.cost == pytest.approx(0.05)
    # Estimate was 0.03 (4s, medium, motion 0.5); the guard now holds the real cost
    assert client.get_usage_stats().daily_cost == pytest.approx(0.05)


@pytest.mark.asyncio
async def test_status_falls_back_to_input_fields(make_client):
    handler = respond_with(
        httpx.Response(
            200,
            json=seedance_job(
                status="processing",
                progress=30,
                input_prompt="Paper cranes",
                input_image_url="https://example.com/cranes.png",
                preview_url="https://cdn.seedance.test/preview.jpg",
                estimated_time=90,
            ),
        )
    )
    client = make_client(SeedanceClient, handler)

    job = await client.check_status("sd-1")

    assert str(handler.requests[0].url) == f"{BASE_URL}/video/status/sd-1"
    assert job.status == "processing"
    assert job.prompt == "Paper cranes"
    assert job.image_url == "https://example.com/cranes.png"
    assert job.thumbnail_url == "https://cdn.seedance.test/preview.jpg"
    assert job.estimated_completion_seconds == 90


@pytest.mark.asyncio
async def test_metadata_wins_over_input_fields(make_client):
    handler = respond_with(
        httpx.Response(
            200,
            json=seedance_job(
                status="completed",
                progress=100,
                video_url="https://cdn.seedance.test/sd-1.mp4",
                input_prompt="truncated",
                metadata={"prompt": "Paper cranes taking flight", "style": "artistic"},
            ),
        )
    )
    client = make_client(SeedanceClient, handler)

    job = await client.check_status("sd-1")

    assert job.prompt == "Paper cranes taking flight"
    assert job.style == "artistic"
    assert job.video_url == "https://cdn.seedance.test/sd-1.mp4"


@pytest.mark.asyncio
async def test_persistent_server_errors_fail_generation(make_client, i2v_request, timer):
    handler = respond_with(httpx.Response(500, json={"error": "internal"}))
    client = make_client(SeedanceClient, handler)

    with pytest.raises(GenerationFailedError) as exc_info:
        await client.generate_video(i2v_request)

    assert exc_info.value.attempts == 3
    assert exc_info.value.last_error.status_code == 500
    assert timer.sleeps == [1, 2]


@pytest.mark.asyncio
async def test_cancel_job(make_client):
    handler = respond_with(httpx.Response(200, json={}))
    client = make_client(SeedanceClient, handler)

    assert await client.cancel_job("sd-1") is True
    assert str(handler.requests[0].url) == f"{BASE_URL}/video/cancel/sd-1"
