"""Review reply drafts and voice previews from the agency dashboard."""
import pytest

from leadrelay.db.models import Review, ReviewResponse
from leadrelay.services import elevenlabs_service


@pytest.fixture
def review(db, make_client) -> Review:
    review = Review(client_id=make_client().id, source="google", rating=4, author_name="Kim", text="Quick and tidy.")
    db.add(review)
    db.commit()
    db.refresh(review)
    return review


@pytest.mark.asyncio
async def test_draft_and_list_review_responses(agency_client, db, review):
    for text in ("Thanks Kim!", "  Thank you, Kim. See you next time!  "):
        res = await agency_client.post(f"/api/admin/reviews/{review.id}/responses", json={"responseText": text})
        assert res.status_code == 201
        assert res.json()["response"]["status"] == "draft"

    res = await agency_client.get(f"/api/admin/reviews/{review.id}/responses")

    assert res.status_code == 200
    texts = [r["responseText"] for r in res.json()["responses"]]
    assert sorted(texts) == ["Thank you, Kim. See you next time!", "Thanks Kim!"]
    assert {r.client_id for r in db.query(ReviewResponse).all()} == {review.client_id}


@pytest.mark.asyncio
async def test_review_responses_for_unknown_review(agency_client):
    res = await agency_client.get("/api/admin/reviews/00000000-0000-0000-0000-000000000000/responses")
    assert res.status_code == 404
    assert res.json() == {"error": "Review not found"}


@pytest.mark.asyncio
async def test_empty_draft_is_rejected(agency_client, review):
    res = await agency_client.post(f"/api/admin/reviews/{review.id}/responses", json={"responseText": ""})
    assert res.status_code == 400


@pytest.mark.asyncio
async def test_voice_preview_returns_audio(agency_client, monkeypatch):
    calls = []

    async def fake_synthesize(voice_id, text, stability=0.5, similarity_boost=0.75, **kwargs):
        calls.append((voice_id, text, stability, similarity_boost))
        return b"ID3fake-mp3"

    monkeypatch.setattr(elevenlabs_service, "synthesize_speech", fake_synthesize)

    res = await agency_client.post(
        "/api/admin/voices/voice_123/preview", json={"text": "Thanks for calling!", "stability": 0.3}
    )

    assert res.status_code == 200
    assert res.headers["content-type"] == "audio/mpeg"
    assert res.content == b"ID3fake-mp3"
    assert calls == [("voice_123", "Thanks for calling!", 0.3, 0.75)]


@pytest.mark.asyncio
async def test_voice_preview_requires_session(client):
    res = await client.post("/api/admin/voices/voice_123/preview", json={"text": "hi"})
    assert res.status_code == 401
