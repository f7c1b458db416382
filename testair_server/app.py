"""testair HTTP service Flask application."""
from __future__ import annotations

import logging
import os
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from flask import Flask

from .routes.runs_api import runs_api_bp

DEFAULT_PORT = 4000


def setup_logging(debug: bool = False, log_dir: Path = Path("log")) -> None:
    """设置日志配置。"""
    log_dir.mkdir(exist_ok=True)

    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=level)

    file_handler = TimedRotatingFileHandler(
        log_dir / "testair-server.log",
        when="midnight",
        encoding="utf-8",
        backupCount=7,
    )
    file_handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
    logging.getLogger().addHandler(file_handler)


def create_app(config: Optional[Dict[str, Any]] = None) -> Flask:
    """创建 Flask 应用实例。"""
    app = Flask(__name__)
    app.config["ARTIFACTS_ROOT"] = os.getenv("ARTIFACTS_ROOT", "runs")
    app.config["MAX_CONTENT_LENGTH"] = 1024 * 1024
    if config:
        app.config.update(config)

    app.register_blueprint(runs_api_bp)
    return app


def main() -> None:
    load_dotenv()
    debug = os.getenv("FLASK_DEBUG") == "1"
    setup_logging(debug)
    app = create_app()

    port = int(os.getenv("PORT", str(DEFAULT_PORT)))
    logging.getLogger("testair.server").info("testair server listening on http://localhost:%s", port)
    app.run(host="0.0.0.0", port=port, debug=debug)


if __name__ == "__main__":
    main()
