from dataclasses import replace

import httpx
import pytest

from tipac.model.db import SchoolApplication
from tipac.server import create_app
from tipac.youtube import PLACEHOLDER_VIDEOS

pytestmark = pytest.mark.anyio

PLACEHOLDER_IDS = {v["id"] for v in PLACEHOLDER_VIDEOS}


def _search_item(video_id, channel_id="UC-tipac"):
    return {
        "id": {"kind": "youtube#video", "videoId": video_id},
        "snippet": {
            "channelId": channel_id,
            "title": f"Video {video_id}",
            "publishedAt": "2024-05-01T10:00:00Z",
            "thumbnails": {"medium": {"url": f"https://i.test/{video_id}"}},
        },
    }


async def test_youtube_without_key_uses_placeholders(client, upstream):
    r = await client.get("/api/youtube")
    assert r.status_code == 200
    videos = r.json()["videos"]
    assert len(videos) == 2
    assert {v["id"] for v in videos} <= PLACEHOLDER_IDS
    assert upstream.requests == []


async def test_youtube_channel_videos(app, client, upstream):
    app.state.settings = replace(app.state.settings, youtube_api_key="yt")
    upstream.youtube_response = (200, {"items": [
        _search_item("a1"), _search_item("b2"),
        _search_item("zz", channel_id="UC-other"),
    ]})
    r = await client.get("/api/youtube")
    videos = r.json()["videos"]
    assert {v["id"] for v in videos} == {"a1", "b2"}
    assert videos[0]["thumbnail"].startswith("https://i.test/")
    assert upstream.requests[0].url.params["channelId"] == "UC-tipac"


async def test_youtube_falls_back_on_error_or_short_feed(app, client,
                                                         upstream):
    app.state.settings = replace(app.state.settings, youtube_api_key="yt")

    upstream.youtube_response = (403, {"error": {"code": 403}})
    r = await client.get("/api/youtube")
    assert {v["id"] for v in r.json()["videos"]} <= PLACEHOLDER_IDS

    upstream.youtube_response = (200, {"items": [_search_item("only")]})
    r = await client.get("/api/youtube")
    assert {v["id"] for v in r.json()["videos"]} <= PLACEHOLDER_IDS


@pytest.mark.parametrize("body", [
    ["not", "an", "object"],
    {"items": "nope"},
    b"<html>maintenance</html>",
])
async def test_youtube_falls_back_on_unexpected_body(app, client, upstream,
                                                     body):
    app.state.settings = replace(app.state.settings, youtube_api_key="yt")
    upstream.youtube_response = (200, body)
    r = await client.get("/api/youtube")
    assert r.status_code == 200
    assert {v["id"] for v in r.json()["videos"]} <= PLACEHOLDER_IDS
    assert len(upstream.requests) == 1


async def test_gallery_images_empty(client):
    r = await client.get("/api/gallery-images")
    assert r.json() == {"images": []}


async def test_gallery_images_shuffled_list(client, store):
    for n in range(5):
        await store.add_gallery_image(filename=f"{n}.jpg",
                                      url=f"https://cdn.test/{n}.jpg",
                                      original_name=None)
    r = await client.get("/api/gallery-images")
    names = sorted(img["filename"] for img in r.json()["images"])
    assert names == [f"{n}.jpg" for n in range(5)]


SCHOOL = {
    "institutionName": "Kololo Primary",
    "address": "Plot 1, Kololo Hill",
    "city": "Kampala",
    "contactPerson": "Mr. Okello",
    "email": "head@kololo.test",
    "phone": "+256700000002",
    "institutionType": "primary",
    "numberOfStudents": "450",
    "gradeLevels": "P1-P7",
    "interestReason": "Drama club for upper primary",
}


async def test_school_application(app, client):
    r = await client.post("/api/school-application", json=SCHOOL)
    assert r.status_code == 200
    app_id = r.json()["id"]

    async with app.state.SessionAsync() as db:
        row = await db.get(SchoolApplication, app_id)
    assert row.status == "pending"
    assert row.number_of_students == 450


@pytest.mark.parametrize("patch", [
    {"city": ""},
    {"email": "nope"},
    {"numberOfStudents": "many"},
])
async def test_school_application_validation(client, patch):
    r = await client.post("/api/school-application",
                          json={**SCHOOL, **patch})
    assert r.status_code == 400


async def test_unknown_route_is_404(client):
    r = await client.get("/api/nothing-here")
    assert r.status_code == 404


async def test_malformed_body_is_400(client):
    r = await client.post("/api/contact", content=b"not json",
                          headers={"Content-Type": "application/json"})
    assert r.status_code == 400


async def test_shared_http_client_keeps_default_timeout(settings, fake_redis):
    app = create_app(settings)
    app.state.redis = fake_redis
    async with httpx.AsyncClient() as plain:
        default = plain.timeout
    async with app.router.lifespan_context(app):
        assert app.state.http.timeout == default
        assert app.state.gateway.timeout == settings.pesapal_timeout
