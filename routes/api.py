from typing import Any, Dict

from flask import Blueprint, abort, current_app, jsonify, request

from utils.markup_converter import MarkupToHtmlConverter
from utils.markup_errors import MarkupConversionError, RendererExecutionError, RendererTimeoutError

api_bp = Blueprint("api", __name__, url_prefix="/api")

MAX_FORMAT_LENGTH = 16


def _require_json(expected_type: str) -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if not payload or not isinstance(payload, dict):
        abort(400, description="Invalid or missing JSON payload")
    if payload.get("type") != expected_type:
        abort(400, description="Unexpected payload type")
    return payload


def _security_log(msg: str) -> None:
    logger = current_app.logger
    security_logger = logger.manager.getLogger("security")
    security_logger.info("%s ip=%s", msg, request.remote_addr)


def _converter() -> MarkupToHtmlConverter:
    return current_app.extensions["markup_converter"]


@api_bp.route("/markup/render", methods=["POST"])
def render_markup():
    data = _require_json("markup")
    content = data.get("content")
    if not isinstance(content, str):
        abort(400, description="content must be a string")
    try:
        size = len(content.encode("utf-8"))
    except UnicodeEncodeError:
        _security_log("Undecodable markup rejected")
        abort(400, description="content must be valid UTF-8")
    if size > current_app.config["MARKUP_MAX_CONTENT_BYTES"]:
        _security_log("Oversized markup rejected")
        abort(413, description="Markup content too large")

    markup_format = data.get("format")
    if markup_format is not None:
        if (
            not isinstance(markup_format, str)
            or not markup_format.isalnum()
            or len(markup_format) > MAX_FORMAT_LENGTH
        ):
            abort(400, description="Invalid markup format")

    try:
        html = _converter().convert(content, markup_format)
    except RendererTimeoutError as exc:
        current_app.logger.warning("Markup rendering timed out: %s", exc)
        abort(504, description="Markup rendering timed out")
    except RendererExecutionError as exc:
        current_app.logger.warning("Markup rendering failed: %s", exc)
        abort(422, description="Markup could not be rendered")
    except MarkupConversionError as exc:
        current_app.logger.error("Markup conversion failed: %s", exc)
        abort(500, description="Markup conversion failed")

    return jsonify({"status": "ok", "html": html})


@api_bp.route("/markup/health", methods=["GET"])
def markup_health():
    converter = _converter()
    return jsonify(
        {
            "status": "ok",
            "renderer": converter.renderer.name,
            "policy_digest": converter.sanitizer.definition.digest,
        }
    )
