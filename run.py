from app import create_app
from app.realtime import socketio
import os

app = create_app()

if __name__ == "__main__":
    port = int(os.getenv("PORT", 5050))
    socketio.run(
        app,
        host=os.getenv("HOST", "127.0.0.1"),
        port=port,
        debug=False,
        use_reloader=False,
        log_output=True,
    )

# Local services:
# docker compose --env-file .env.docker up -d
#
# API + Socket.IO in one process:
# PORT=5050 python run.py
#
# Worker (notifications, deferred webhooks, reconciliation):
# rq worker -u $REDIS_URL default
#
# Forward processor webhooks in dev:
# stripe listen --forward-to localhost:5050/webhooks/stripe
