"""CLI entry point for sonar-bot."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from types import TracebackType
from typing import Any, Optional

from sonar_bot.ai.client import PerplexityClient
from sonar_bot.app import ChatBotApp, StartupError
from sonar_bot.config import AppConfig, load_config, validate_for_production
from sonar_bot.log import get_logger, setup_logging

logger = get_logger("sonar_bot")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="sonar-bot",
        description="Telegram and WhatsApp chatbot powered by the Perplexity API",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (
        ("start", "Start the bot"),
        ("config-check", "Validate configuration"),
        ("model-info", "Show AI model configuration"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
        sub.add_argument("-e", "--env", default=".env", help="Path to .env file")

    args = parser.parse_args()

    if args.command is None:
        # Default to start
        args.command = "start"
        args.config = "config.yaml"
        args.env = ".env"

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "model-info":
        _model_info(args.config, args.env)
    elif args.command == "start":
        _run(args.config, args.env)


def _load(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load(config_path, env_path)
    problems = validate_for_production(config)

    print(f"Environment: {config.env}")
    print(f"  Data directory: {config.data_dir}")
    print(f"  Telegram: {'enabled' if config.telegram.enabled else 'disabled'}")
    print(f"  WhatsApp: {'enabled' if config.whatsapp.enabled else 'disabled'}")
    print(f"  Sessions: {'redis' if config.redis.enabled else 'memory'}")
    print(
        f"  Rate limit: {config.security.rate_limit_requests} requests "
        f"per {config.security.rate_limit_window_seconds}s"
    )
    print(f"  Admin API port: {config.server.port}")

    if problems:
        print("Configuration problems:", file=sys.stderr)
        for problem in problems:
            print(f"  - {problem}", file=sys.stderr)
        sys.exit(1)
    print("Configuration valid")


def _model_info(config_path: str, env_path: str) -> None:
    """Show AI model configuration."""
    config = _load(config_path, env_path)

    print("AI Model Configuration")
    print("=" * 50)
    print(f"  Model     : {config.ai.model}")
    print(f"  Temp      : {config.ai.temperature}")
    print(f"  Tokens    : {config.ai.max_tokens}")
    print(f"  Citations : {'on' if config.perplexity.return_citations else 'off'}")
    print(f"  Endpoint  : {config.perplexity.base_url}")
    print(f"  Available : {', '.join(PerplexityClient.available_models())}")
    print()


def _install_exception_hooks(config: AppConfig) -> None:
    """Log uncaught exceptions; in production they also end the process."""

    def _excepthook(
        exc_type: type[BaseException],
        exc: BaseException,
        tb: Optional[TracebackType],
    ) -> None:
        logger.error("uncaught_exception", exc_info=(exc_type, exc, tb))
        if config.is_production:
            sys.exit(1)

    sys.excepthook = _excepthook


def _loop_exception_handler(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    error = context.get("exception")
    logger.error(
        "unhandled_task_exception",
        message=context.get("message"),
        error=str(error) if error else None,
    )


def _run(config_path: str, env_path: str) -> None:
    """Load config and start the application."""
    config = _load(config_path, env_path)

    setup_logging(
        config.logging.level,
        log_file=config.logging.file_path,
        json_output=config.is_production,
    )

    if config.is_production:
        problems = validate_for_production(config)
        if problems:
            for problem in problems:
                logger.error("configuration_invalid", problem=problem)
            sys.exit(1)

    _install_exception_hooks(config)

    async def _async_main() -> None:
        loop = asyncio.get_running_loop()
        loop.set_exception_handler(_loop_exception_handler)
        stop_event = asyncio.Event()

        def _signal_handler() -> None:
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _signal_handler)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                signal.signal(sig, lambda s, f: _signal_handler())

        app = ChatBotApp(config)
        try:
            await app.start()
        except StartupError as e:
            logger.error("startup_failed", error=str(e))
            await app.stop()
            sys.exit(1)

        await stop_event.wait()
        logger.info("shutdown_requested")
        await app.stop()

    asyncio.run(_async_main())


if __name__ == "__main__":
    main()
