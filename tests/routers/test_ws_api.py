"""Tests for the client websocket."""


def test_connect_and_ping(client):
    with client.websocket_connect("/ws") as websocket:
        hello = websocket.receive_json()
        assert hello["event"] == "connected"
        assert hello["data"]["connectionId"]

        websocket.send_json({"event": "ping"})
        assert websocket.receive_json() == {"event": "pong", "data": {}}


def test_invalid_messages_get_errors(client):
    with client.websocket_connect("/ws") as websocket:
        websocket.receive_json()

        websocket.send_text("not json")
        error = websocket.receive_json()
        assert error["event"] == "error"
        assert error["data"]["code"] == "invalid_payload"

        websocket.send_json({"event": "subscribe-bot", "data": {}})
        error = websocket.receive_json()
        assert error["data"]["code"] == "validation_error"

        websocket.send_json({"event": "dance"})
        assert websocket.receive_json()["data"]["code"] == "validation_error"


def test_subscribe_routes_webhook_events(client):
    relay = client.app.state.relay
    with client.websocket_connect("/ws") as websocket:
        connection_id = websocket.receive_json()["data"]["connectionId"]

        websocket.send_json({"event": "subscribe-bot", "data": {"botId": "recall-bot-1"}})
        assert websocket.receive_json() == {
            "event": "bot-subscribed",
            "data": {"botId": "recall-bot-1", "status": "created"},
        }
        assert relay.router.resolve("recall-bot-1") == connection_id

        client.post(
            "/webhook/transcription",
            json={
                "event": "transcript.data",
                "data": {
                    "bot": {"id": "recall-bot-1"},
                    "data": [{"participant": {"id": 1, "name": "Ana"}, "words": [{"text": "Hello"}]}],
                },
            },
        )

        updated = websocket.receive_json()
        finalized = websocket.receive_json()
        assert updated["event"] == "transcription"
        assert updated["data"]["type"] == "intervention.updated"
        assert finalized["data"]["type"] == "intervention.finalized"
        assert finalized["data"]["intervention"]["text"] == "Hello"


def test_create_bot_over_websocket(client, fake_recall):
    relay = client.app.state.relay
    with client.websocket_connect("/ws") as websocket:
        connection_id = websocket.receive_json()["data"]["connectionId"]

        websocket.send_json({"event": "create-bot", "data": {"meetingUrl": "https://meet.example.com/abc"}})
        created = websocket.receive_json()

        assert created["event"] == "bot-created"
        assert created["data"]["botId"] == "recall-bot-1"
        assert relay.router.resolve("recall-bot-1") == connection_id


def test_create_bot_failure_over_websocket(client, fake_recall):
    fake_recall.create_status = 400
    with client.websocket_connect("/ws") as websocket:
        websocket.receive_json()

        websocket.send_json({"event": "create-bot", "data": {"meetingUrl": "bad"}})
        error = websocket.receive_json()

        assert error["event"] == "bot-error"
        assert error["data"] == {"message": "Failed to create bot", "error": {"detail": "Invalid meeting url"}}

        websocket.send_json({"event": "create-bot", "data": {}})
        assert websocket.receive_json()["data"]["message"] == "Meeting URL is required"


def test_disconnect_removes_sessions(client):
    relay = client.app.state.relay
    with client.websocket_connect("/ws") as websocket:
        websocket.receive_json()
        websocket.send_json({"event": "subscribe-bot", "data": {"botId": "recall-bot-1"}})
        websocket.receive_json()

    assert relay.store.get("recall-bot-1") is None
    assert len(relay.connections) == 0
