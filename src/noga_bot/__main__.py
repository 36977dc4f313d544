"""CLI entry point for noga-bot."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from noga_bot.app import NogaBotApp
from noga_bot.config import AppConfig, load_config, validate_config
from noga_bot.log import setup_logging


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="noga-bot",
        description="Household chat assistant for calendar, shopping list and smart home",
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


def _load_or_exit(config_path: str, env_path: str) -> AppConfig:
    """Load config; configuration problems are the only fatal startup errors."""
    try:
        config = load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Run 'python install.py' first or copy config.example.yaml to config.yaml")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    problems = validate_config(config)
    if problems:
        for problem in problems:
            print(f"Configuration error: {problem}", file=sys.stderr)
        sys.exit(1)
    return config


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load_or_exit(config_path, env_path)
    print(f"Configuration valid: {config_path}")
    print(f"  Data directory : {config.data_dir}")
    print(f"  AI backend     : {config.ai.backend} ({config.ai.model})")
    print(f"  Telegram users : {len(config.telegram.allowed_user_ids) or 'any'}")
    print(f"  Broadcast chat : {config.telegram.broadcast_chat_id or '(none)'}")
    print(f"  Home Assistant : {'configured' if config.home_assistant else 'not configured'}")
    print(f"  Google         : {'configured' if config.google else 'not configured'}")
    print(f"  Storage        : {config.storage.db_path}")
    print(f"  HTTP API       : {'enabled on port ' + str(config.api.port) if config.api.enabled else 'disabled'}")


def _model_info(config_path: str, env_path: str) -> None:
    """Show AI model information."""
    config = _load_or_exit(config_path, env_path)
    ai = config.ai
    print("AI Model Configuration")
    print("=" * 50)
    print(f"    Backend      : {ai.backend}")
    print(f"    Model        : {ai.model}")
    print(f"    Tokens       : {ai.max_tokens}")
    print(f"    Temperatures : device={ai.device_temperature} chat={ai.chat_temperature} "
          f"broadcast={ai.broadcast_temperature}")
    print(f"    History      : {ai.history_limit} turns")
    print(f"    Tool rounds  : {ai.max_tool_rounds}")
    print()


def _run(config_path: str, env_path: str) -> None:
    """Load config and start the application."""
    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level)

    async def _async_main() -> None:
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                signal.signal(sig, lambda s, f: loop.call_soon_threadsafe(stop_event.set))

        app = NogaBotApp(config)
        await app.start()
        try:
            await stop_event.wait()
        finally:
            await app.stop()

    asyncio.run(_async_main())


if __name__ == "__main__":
    main()
