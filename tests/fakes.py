"""Test doubles for the connection registry and the provider API."""

import asyncio
import json
from typing import Any

import httpx


class FakeConnections:
    """Connection registry that records every frame instead of sending it."""

    def __init__(self, live: list[str] | None = None) -> None:
        self.live = set(live or [])
        self.sent: list[tuple[str, str, dict[str, Any]]] = []

    def is_live(self, connection_id: str) -> bool:
        return connection_id in self.live

    def live_connection_ids(self) -> list[str]:
        return sorted(self.live)

    async def send_to(self, connection_id: str, event_name: str, payload: dict[str, Any]) -> bool:
        if connection_id not in self.live:
            return False
        self.sent.append((connection_id, event_name, payload))
        return True

    async def broadcast(self, event_name: str, payload: dict[str, Any]) -> int:
        for connection_id in sorted(self.live):
            self.sent.append((connection_id, event_name, payload))
        return len(self.live)

    def frames_for(self, connection_id: str, event_name: str | None = None) -> list[dict[str, Any]]:
        return [
            payload
            for target, name, payload in self.sent
            if target == connection_id and (event_name is None or name == event_name)
        ]


class StalledConnections(FakeConnections):
    """Registry whose sends hang until ``release`` is set, like a stuck socket."""

    def __init__(self, live: list[str] | None = None) -> None:
        super().__init__(live)
        self.release = asyncio.Event()

    async def send_to(self, connection_id: str, event_name: str, payload: dict[str, Any]) -> bool:
        await self.release.wait()
        return await super().send_to(connection_id, event_name, payload)


class FakeRecallApi:
    """``httpx.MockTransport`` handler standing in for the provider API."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.bot_id = "recall-bot-1"
        self.create_status = 201
        self.bot_data: dict[str, Any] = {"id": self.bot_id, "status": "in_call"}
        self.downloads: dict[str, Any] = {}

    def json_body(self, index: int = -1) -> Any:
        return json.loads(self.requests[index].content)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.url.host == "downloads.example.com":
            return httpx.Response(200, json=self.downloads.get(path, {}))
        if request.method == "POST" and path.endswith("/bot"):
            if self.create_status >= 400:
                return httpx.Response(self.create_status, json={"detail": "Invalid meeting url"})
            return httpx.Response(self.create_status, json={"id": self.bot_id})
        if request.method == "POST" and path.endswith("/output_audio/"):
            return httpx.Response(200, json={"ok": True})
        if request.method == "GET" and "/bot/" in path:
            return httpx.Response(200, json=self.bot_data)
        return httpx.Response(404, json={"detail": "Not found"})
