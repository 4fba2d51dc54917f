import logging
import os
from flask_socketio import SocketIO, join_room, leave_room, emit

log = logging.getLogger(__name__)

_raw = os.getenv("SOCKETIO_CORS_ORIGINS", "*").strip()
CORS_ORIGINS = "*" if _raw == "*" else [o.strip() for o in _raw.split(",") if o.strip()]
ASYNC_MODE = os.getenv("SOCKETIO_ASYNC_MODE", "eventlet")

socketio = SocketIO(
    cors_allowed_origins=CORS_ORIGINS,
    async_mode=ASYNC_MODE,
)


def campaign_room(campaign_id: str) -> str:
    return f"campaign:{campaign_id}"


def mask_email(e: str | None) -> str | None:
    if not e:
        return None
    local, _, domain = e.partition("@")
    if not domain:
        return e
    if len(local) <= 2:
        masked = local[0:1] + "***"
    else:
        masked = local[0] + "***" + local[-1]
    return masked + "@" + domain


def broadcast_campaign_update(campaign_id: str, event: str, payload: dict) -> None:
    """Best-effort push to everyone watching the campaign page."""
    try:
        socketio.emit(event, payload, to=campaign_room(campaign_id))
    except Exception as e:
        log.warning("[socket] emit %s for campaign %s failed: %s", event, campaign_id, e)


def init_socketio(app):
    socketio.init_app(app)

    @socketio.on("connect")
    def handle_connect():
        emit("connected", {"ok": True})

    @socketio.on("join_campaign")
    def on_join(data):
        cid = (data or {}).get("campaign_id")
        if not cid:
            emit("error", {"error": "campaign_id required"})
            return
        room = campaign_room(cid)
        join_room(room)
        emit("joined", {"room": room})

    @socketio.on("leave_campaign")
    def on_leave(data):
        cid = (data or {}).get("campaign_id")
        if not cid:
            return
        room = campaign_room(cid)
        leave_room(room)
        emit("left", {"room": room})
