#!/usr/bin/env python3
"""
CLI entrypoint for running a DOOH signage screen.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import logging.handlers
import sys
from pathlib import Path

if __package__ is None or __package__ == "":
    repo_root = Path(__file__).resolve().parents[1]
    src_dir = repo_root / "src"
    if str(src_dir) not in sys.path:
        sys.path.insert(0, str(src_dir))

from dooh_signage import SignageClient, load_config
from dooh_signage.config import ConfigError, SignageConfig, resolve_endpoints


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="DOOH signage client (camera -> analysis backend)"
    )
    parser.add_argument(
        "-c",
        "--config",
        help="Path to YAML configuration file (optional, defaults apply)",
    )
    parser.add_argument("--api-url", help="Backend REST base URL (overrides config)")
    parser.add_argument("--ws-url", help="Backend WebSocket URL (overrides config)")
    parser.add_argument("--screen-id", help="Screen identifier sent with every frame")
    parser.add_argument(
        "--camera",
        help="Camera selector: roster index or device handle (overrides config)",
    )
    parser.add_argument(
        "--status-port",
        type=int,
        help="Serve the local status API on this port",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        help="Path to log file (optional, logs to file in addition to console)",
    )
    parser.add_argument(
        "--log-format",
        default="standard",
        choices=["standard", "detailed", "json"],
        help="Log format (default: standard)",
    )
    parser.add_argument(
        "--log-rotate",
        action="store_true",
        help="Enable log rotation (only with --log-file, max 10MB x 5 files)",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored log output",
    )
    return parser.parse_args(argv)


class ColoredFormatter(logging.Formatter):
    """Formatter that colours the level name on terminals."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str, use_color: bool = True):
        super().__init__(fmt)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        if self.use_color and record.levelname in self.COLORS:
            record_copy = logging.makeLogRecord(record.__dict__)
            record_copy.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{self.RESET}"
            return super().format(record_copy)
        return super().format(record)


def setup_logging(args: argparse.Namespace) -> None:
    """Configure console (and optional file) logging for the screen process."""
    log_level = getattr(logging, args.log_level.upper(), logging.INFO)

    if args.log_format == "detailed":
        log_format = (
            "%(asctime)s [%(levelname)-8s] [%(process)d:%(thread)d] "
            "%(name)s:%(funcName)s:%(lineno)d | %(message)s"
        )
    elif args.log_format == "json":
        log_format = (
            '{"time":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s",'
            '"message":"%(message)s"}'
        )
    else:
        log_format = "%(asctime)s [%(levelname)-8s] %(name)s | %(message)s"

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    use_color = not args.no_color and sys.stdout.isatty() and args.log_format != "json"
    console_handler.setFormatter(
        ColoredFormatter(log_format) if use_color else logging.Formatter(log_format)
    )
    root_logger.addHandler(console_handler)

    # websockets traces every frame at DEBUG
    logging.getLogger("websockets").setLevel(max(log_level, logging.INFO))

    if args.log_file:
        log_path = Path(args.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        if args.log_rotate:
            file_handler = logging.handlers.RotatingFileHandler(
                log_path,
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
        else:
            file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(log_format))
        root_logger.addHandler(file_handler)
        logging.info("Logging to file: %s", log_path)


def build_config(args: argparse.Namespace) -> SignageConfig:
    config = load_config(args.config)
    if args.api_url or args.ws_url:
        api_url = args.api_url or (config.backend.api_base_url if not args.ws_url else None)
        ws_url = args.ws_url or (config.backend.ws_url if not args.api_url else None)
        config.backend.api_base_url, config.backend.ws_url = resolve_endpoints(api_url, ws_url)
    if args.screen_id:
        config.screen_id = args.screen_id
    if args.camera:
        config.capture.camera = args.camera
    if args.status_port:
        config.status_server.enabled = True
        config.status_server.port = args.status_port
    config.validate()
    return config


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    setup_logging(args)
    logger = logging.getLogger(__name__)

    try:
        config = build_config(args)
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    logger.info("Starting signage screen %s", config.screen_id)
    logger.info("Backend REST: %s | WebSocket: %s", config.backend.api_base_url, config.backend.ws_url)

    client = SignageClient(config)
    try:
        asyncio.run(client.run_forever())
    except KeyboardInterrupt:
        logger.info("Interrupted by user, shutting down gracefully")
    except Exception as exc:
        logger.exception("Signage client failed with error: %s", exc)
        return 1

    logger.info("Signage client shutdown complete")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
