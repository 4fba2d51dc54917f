# app/__init__.py
import logging
import os
from datetime import timedelta

from flask import Flask
from dotenv import load_dotenv
from flask_jwt_extended import JWTManager

load_dotenv(dotenv_path=".env")

from app.routes import (  # noqa: E402
    core,
    campaigns,
    donations_bp,
    webhooks_bp,
    admin_bp,
)
from app.realtime import init_socketio  # noqa: E402


def create_app():
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    app = Flask(__name__)
    app.url_map.strict_slashes = False

    # JWT (admin endpoints only)
    app.config["JWT_SECRET_KEY"] = os.getenv("JWT_SECRET", "dev-secret")
    app.config["JWT_TOKEN_LOCATION"] = ["headers"]
    app.config["JWT_HEADER_NAME"] = "Authorization"
    app.config["JWT_HEADER_TYPE"] = "Bearer"
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(minutes=15)
    JWTManager(app)

    @app.get("/__ping")
    def __ping():
        return {"ok": True}, 200

    app.register_blueprint(core)
    app.register_blueprint(campaigns, url_prefix="/api/campaigns")
    app.register_blueprint(donations_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(admin_bp)

    init_socketio(app)
    return app
