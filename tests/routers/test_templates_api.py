"""Tests for bot template CRUD."""

TEMPLATE = {
    "name": "Weekly sync",
    "bot_name": "Sync Notes",
    "transcription_type": "ai_transcription",
    "language": "en-US",
    "bot_photo_url": "https://img.example.com/bot.jpg",
}


def test_template_crud(client):
    created = client.post("/api/templates", json=TEMPLATE)
    assert created.status_code == 201
    template_id = created.json()["id"]

    assert [t["id"] for t in client.get("/api/templates").json()] == [template_id]
    assert client.get(f"/api/templates/{template_id}").json()["bot_name"] == "Sync Notes"

    updated = client.put(
        f"/api/templates/{template_id}",
        json={"language": "es", "bot_name": None, "bot_photo_url": None},
    )
    assert updated.status_code == 200
    body = updated.json()
    assert body["language"] == "es"
    assert body["bot_name"] == "Sync Notes"
    assert body["bot_photo_url"] is None

    assert client.delete(f"/api/templates/{template_id}").status_code == 204
    assert client.get(f"/api/templates/{template_id}").status_code == 404


def test_invalid_transcription_type_is_rejected(client):
    response = client.post("/api/templates", json={**TEMPLATE, "transcription_type": "whisper"})

    assert response.status_code == 422


def test_unknown_template(client):
    assert client.put("/api/templates/missing", json={"language": "es"}).status_code == 404
    assert client.delete("/api/templates/missing").status_code == 404
