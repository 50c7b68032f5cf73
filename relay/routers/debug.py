"""Debug endpoints for inspecting and cleaning the in-memory session map."""

from fastapi import APIRouter

from relay.core.deps import RelayDep
from relay.domain.transcript import utc_iso

router = APIRouter(prefix="/debug", tags=["debug"])


@router.get("/bots")
async def list_bot_sessions(relay: RelayDep) -> dict:
    """Dump every bot session with whether its connection is still live."""
    sessions = relay.store.all()
    return {
        "totalSessions": len(sessions),
        "sessions": [
            {
                "botId": session.bot_id,
                "socketId": session.connection_id,
                "meetingUrl": session.meeting_url,
                "status": session.lifecycle_state,
                "socketConnected": relay.connections.is_live(session.connection_id),
                "createdAt": utc_iso(session.created_at),
                "updatedAt": utc_iso(session.updated_at),
            }
            for session in sessions
        ],
        "connectedSockets": relay.connections.live_connection_ids(),
    }


@router.post("/cleanup")
async def cleanup_sessions(relay: RelayDep) -> dict:
    """Remove sessions whose owning connection is gone."""
    report = relay.cleanup_orphaned()
    return {
        "message": "Cleanup completed",
        "initialSessions": report.initial_sessions,
        "remainingSessions": report.remaining_sessions,
        "removedSessions": report.removed_sessions,
        "removedBotIds": report.removed_bot_ids,
    }
