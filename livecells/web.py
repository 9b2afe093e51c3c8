"""
Local feedback server for pages configured with the local backend, using Flask.
"""

import asyncio
import logging
from typing import Optional

from flask import Flask, jsonify, request

from livecells.config import Settings
from livecells.feedback import (
    FeedbackBackend,
    FeedbackCredentialMissing,
    FeedbackError,
    RemoteModelBackend,
)

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, backend: Optional[FeedbackBackend] = None) -> Flask:
    """
    Build the Flask app answering POST /api/feedback.

    The server holds the API key so pages do not have to; it forwards
    the message exchange to the remote model API.

    Args:
        settings: Server settings, read from the environment if omitted
        backend: Backend to forward to, built from settings if omitted
    """
    settings = settings or Settings.from_env()
    if backend is None:
        backend = RemoteModelBackend(
            settings.base_url,
            settings.api_key,
            preferred_model=settings.preferred_model,
            timeout=settings.request_timeout,
        )

    app = Flask(__name__)

    @app.after_request
    def _allow_cross_origin(response):
        # Pages are served from another origin than the server.
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        response.headers["Access-Control-Allow-Methods"] = "POST, OPTIONS"
        return response

    @app.route("/api/health", methods=["GET"])
    def api_health():
        return jsonify({"ok": True, "backend": backend.name})

    @app.route("/api/feedback", methods=["POST", "OPTIONS"])
    def api_feedback():
        if request.method == "OPTIONS":
            return "", 204

        data = request.get_json(force=True, silent=True) or {}
        messages = data.get("messages")
        if not isinstance(messages, list) or not messages:
            return jsonify({"error": "'messages' must be a non-empty list"}), 400

        try:
            reply = asyncio.run(backend.complete(messages))
        except FeedbackCredentialMissing as e:
            return jsonify({"error": str(e)}), 400
        except FeedbackError as e:
            logger.error("Upstream feedback request failed: %s", e)
            return jsonify({"error": str(e)}), 502

        logger.info("Feedback served with model %s", reply.model)
        return jsonify({
            "choices": [{"message": {"role": "assistant", "content": reply.content}}],
            "model_list": reply.model_list,
            "selected_model": reply.model,
        })

    return app


def launch_server(host: str = "127.0.0.1", port: int = 5000, settings: Optional[Settings] = None):
    """Run the feedback server until interrupted."""
    app = create_app(settings)
    app.run(host=host, port=port, debug=False)
