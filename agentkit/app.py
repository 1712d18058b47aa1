"""agentkit command line entry point."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from agentkit.engine.config import ServerConfig, resolve_claude_home
from agentkit.engine.yaml_config import discover_config_path, load_yaml_config

logger = logging.getLogger(__name__)


def configure_logging(level: str, log_dir: Path | None = None) -> Path:
    """Rotating file log plus stderr. Returns the log file path."""
    log_dir = log_dir or Path.home() / ".agentkit" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "agentkit-server.log"

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
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


def build_config(args) -> ServerConfig:
    """Env, then YAML, then command line flags (highest wins)."""
    config = ServerConfig.from_env()

    config_path = args.config
    if config_path:
        if not Path(config_path).is_file():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        config_path = discover_config_path(Path.cwd())
    if config_path:
        config = load_yaml_config(config_path, config)

    if args.host:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.cwd:
        config.cwd = str(Path(args.cwd).expanduser().resolve())
        if not (os.getenv("CLAUDE_HOME") or os.getenv("CLAUDE_AGENT_HOME")):
            config.claude_home = resolve_claude_home(cwd_hint=config.cwd)
    if args.model:
        config.model = args.model
    if args.verbose:
        config.log_level = "DEBUG"
    return config


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(
        prog="agentkit",
        description="agentkit: shared streaming agent sessions over WebSocket",
    )
    parser.add_argument("--host", help="Interface to bind (default 127.0.0.1)")
    parser.add_argument("--port", type=int, help="Port to listen on (default 3000)")
    parser.add_argument(
        "--config", metavar="PATH",
        help="YAML config file (default: .agentkit/agentkit.yaml or agentkit.yaml)",
    )
    parser.add_argument("--cwd", help="Working directory for new sessions")
    parser.add_argument("--model", help="Default model for new sessions")
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Log at DEBUG level",
    )
    args = parser.parse_args()

    try:
        config = build_config(args)
    except (OSError, ValueError) as exc:
        print(f"agentkit: {exc}", file=sys.stderr)
        sys.exit(2)

    log_file = configure_logging(config.log_level)
    logger.info(
        "Starting agentkit server cwd=%s host=%s port=%s config=%s log=%s",
        config.cwd or Path.cwd(), config.host, config.port,
        args.config or "<auto>", log_file,
    )

    from agentkit.web.server import AgentKitServer

    server = AgentKitServer(config)
    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
