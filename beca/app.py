"""BECA host: main application entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from beca.engine.config import BecaConfig
from beca.engine.errors import ConfigError
from beca.engine.yaml_config import apply_overrides, find_config_file, load_yaml_config


def _configure_logging(level_name: str) -> Path:
    """Root logger: rotating file under ~/.beca/logs plus stderr."""
    log_dir = Path.home() / ".beca" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "beca-server.log"

    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    return log_file


def _load_config(args: argparse.Namespace) -> BecaConfig:
    config_path = Path(args.config) if args.config else find_config_file(Path.cwd())
    config = load_yaml_config(config_path) if config_path else BecaConfig.from_env()
    overrides = {}
    if args.api_url:
        overrides["api_url"] = args.api_url
    if args.workspace:
        overrides["workspace_root"] = str(Path(args.workspace).resolve())
    if args.no_auto_review:
        overrides["auto_review"] = False
    return apply_overrides(config, overrides)


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="beca",
        description="BECA: editor host for the BECA coding assistant",
    )
    parser.add_argument(
        "--host", default="127.0.0.1",
        help="Interface to bind (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port", type=int, default=0,
        help="Server port (0=random available port)",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help="YAML config file (default: .beca/beca.yaml or beca.yaml)",
    )
    parser.add_argument(
        "--api-url", default=None,
        help="Assistant backend URL (overrides config)",
    )
    parser.add_argument(
        "--workspace", default=None,
        help="Workspace root for applied edits (default: current dir)",
    )
    parser.add_argument(
        "--no-auto-review", action="store_true",
        help="Disable analysis on change and review on save",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    level = "DEBUG" if args.verbose else os.getenv("BECA_LOG_LEVEL", "INFO")
    log_file = _configure_logging(level)
    logger = logging.getLogger(__name__)

    try:
        config = _load_config(args)
    except ConfigError as exc:
        logger.error("%s", exc)
        sys.exit(1)

    logger.info(
        "Starting BECA host cwd=%s port=%s backend=%s log=%s",
        Path.cwd(), args.port, config.api_url, log_file,
    )

    from beca.vscode.server import BecaServer

    server = BecaServer(config, host=args.host, port=args.port)
    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("Interrupted.")


if __name__ == "__main__":
    main()
