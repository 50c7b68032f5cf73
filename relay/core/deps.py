"""FastAPI dependencies for reaching the relay attached to the application."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, WebSocket, status

from relay.services.transcript_relay import TranscriptRelay


def get_relay(request: Request) -> TranscriptRelay:
    """
    Return the relay built at startup.

    Raises:
        HTTPException: 503 when the application has not finished starting
    """
    relay = getattr(request.app.state, "relay", None)
    if relay is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Relay not initialized"
        )
    return relay


def get_ws_relay(websocket: WebSocket) -> TranscriptRelay | None:
    return getattr(websocket.app.state, "relay", None)


RelayDep = Annotated[TranscriptRelay, Depends(get_relay)]
