"""Tests for the provider webhook endpoint."""


def test_status_change_updates_session(client):
    relay = client.app.state.relay
    relay.router.register("recall-bot-1", "conn-gone")

    response = client.post(
        "/webhook/transcription",
        json={"event": "bot.status_change", "data": {"bot": {"id": "recall-bot-1"}, "status": "in_call"}},
    )

    assert response.status_code == 200
    assert response.json() == {"status": "success"}
    assert relay.store.get("recall-bot-1").lifecycle_state == "in_call"


def test_transcript_event_reaches_relay(client, monkeypatch):
    relay = client.app.state.relay
    outcomes = []
    handle_webhook = relay.handle_webhook

    async def recording_handle_webhook(envelope):
        outcome = await handle_webhook(envelope)
        outcomes.append(outcome)
        return outcome

    monkeypatch.setattr(relay, "handle_webhook", recording_handle_webhook)

    response = client.post(
        "/webhook/transcription",
        json={
            "event": "transcript.partial_data",
            "data": {
                "bot": {"id": "recall-bot-1"},
                "data": {
                    "participant": {"id": 4, "name": "Dana"},
                    "words": [{"text": "Morning", "start_timestamp": {"relative": 1.5}}],
                },
            },
        },
    )

    assert response.status_code == 200
    assert len(outcomes) == 1
    assert outcomes[0].bot_id == "recall-bot-1"
    assert outcomes[0].handled is True
    assert outcomes[0].fragments == 1


def test_malformed_bodies_are_acknowledged(client):
    assert client.post("/webhook/transcription", content=b"not json").json() == {"status": "success"}
    assert client.post("/webhook/transcription", json=["a", "list"]).status_code == 200
    assert client.post("/webhook/transcription", json={"event": "recording.done"}).status_code == 200


def test_handler_crash_returns_500(client, monkeypatch):
    async def explode(envelope):
        raise RuntimeError("boom")

    monkeypatch.setattr(client.app.state.relay, "handle_webhook", explode)

    response = client.post("/webhook/transcription", json={"event": "transcript.data", "data": {}})

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}
