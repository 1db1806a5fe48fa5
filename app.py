import atexit
import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from flask import Flask, jsonify, request, session

from polish.api import polish_bp
from polish.config import DATA_DIR, SECRET_PASSPHRASE_ENV
from polish.revision import RevisionService
from polish.session import PolishSession

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(polish_session=None, revision_service=None):
    app = Flask(__name__)
    app.secret_key = os.getenv("SECRET_KEY", "your-secret-key-here")

    # Configuration
    app.config["ACCESS_PASSWORD"] = os.getenv("ACCESS_PASSWORD")
    app.config["POLISH_DATA_DIR"] = Path(os.getenv("POLISH_DATA_DIR", DATA_DIR))
    app.config["MAX_CONTENT_LENGTH"] = 10 * 1024 * 1024  # 10MB

    if polish_session is None:
        polish_session = PolishSession.create(
            data_dir=app.config["POLISH_DATA_DIR"],
            passphrase=os.getenv(SECRET_PASSPHRASE_ENV),
        )
        atexit.register(polish_session.close)
    app.extensions["polish_session"] = polish_session
    app.extensions["polish_service"] = revision_service or RevisionService(polish_session)

    app.register_blueprint(polish_bp)

    @app.route("/")
    def index():
        return jsonify(
            {
                "name": "ScholarDraft",
                "authenticated": is_authenticated(),
                "api": "/api/polish",
            }
        )

    @app.route("/auth", methods=["POST"])
    def authenticate():
        password = request.form.get("password") or (request.get_json(silent=True) or {}).get("password")
        if password and password == app.config["ACCESS_PASSWORD"]:
            session["authenticated"] = True
            return jsonify({"success": True})
        return jsonify({"error": "Invalid password"}), 401

    @app.route("/logout", methods=["POST"])
    def logout():
        session.pop("authenticated", None)
        return jsonify({"success": True})

    def is_authenticated():
        if not app.config["ACCESS_PASSWORD"]:
            return True
        return session.get("authenticated", False)

    logger.info("ScholarDraft ready (data dir: %s)", app.config["POLISH_DATA_DIR"])
    return app


if __name__ == "__main__":
    create_app().run(
        debug=os.getenv("FLASK_DEBUG", "0") == "1",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "5000")),
    )
