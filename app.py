import logging
import os
from typing import Optional

from flask import Flask

from config import Config
from routes.api import api_bp
from utils.markup_converter import MarkupToHtmlConverter
from utils.markup_renderers import create_renderer


def create_app(config_object: Optional[object] = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    _configure_logging(app)
    _init_markup_converter(app)

    app.register_blueprint(api_bp)

    return app


def _configure_logging(app: Flask) -> None:
    log_dir = app.config["LOG_DIR"]
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, "server.log")
    security_log_path = os.path.join(log_dir, "security.log")
    level = _log_level(app.config.get("LOG_LEVEL", "INFO"))

    handler = logging.FileHandler(log_path)
    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(formatter)
    handler.setLevel(level)

    app.logger.setLevel(level)
    _set_file_handler(app.logger, handler)
    logging.getLogger("utils").setLevel(level)
    _set_file_handler(logging.getLogger("utils"), handler)

    security_handler = logging.FileHandler(security_log_path)
    security_handler.setFormatter(formatter)
    security_handler.setLevel(logging.INFO)
    security_logger = logging.getLogger("security")
    security_logger.setLevel(logging.INFO)
    _set_file_handler(security_logger, security_handler)


def _log_level(name: str) -> int:
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else logging.INFO


def _set_file_handler(logger: logging.Logger, handler: logging.FileHandler) -> None:
    # Loggers are process-global; a new app replaces the file handlers of the previous one.
    for existing in list(logger.handlers):
        if isinstance(existing, logging.FileHandler) and existing is not handler:
            logger.removeHandler(existing)
            existing.close()
    if handler not in logger.handlers:
        logger.addHandler(handler)


def _init_markup_converter(app: Flask) -> None:
    cache_dir = app.config["MARKUP_CACHE_DIR"]
    os.makedirs(cache_dir, exist_ok=True)
    renderer = create_renderer(
        app.config["MARKUP_RENDERER"],
        binary=app.config["GITHUB_MARKUP_BIN"],
        timeout=app.config["GITHUB_MARKUP_TIMEOUT"],
    )
    app.extensions["markup_converter"] = MarkupToHtmlConverter(
        cache_dir, app.logger.getChild("markup"), renderer=renderer
    )
    app.logger.info("Markup converter ready (renderer=%s, cache=%s)", renderer.name, cache_dir)


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=5000, debug=False, use_reloader=False)
