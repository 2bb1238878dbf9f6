"""CLI entry point for chatloom."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from datetime import datetime

from chatloom.app import ChatloomApp
from chatloom.config import AppConfig, load_config
from chatloom.core.accumulator import StreamCallbacks
from chatloom.core.types import TurnState
from chatloom.errors import ChatloomError
from chatloom.log import setup_logging
from chatloom.providers.registry import ProviderRegistry
from chatloom.providers.transport import AiohttpTransport
from chatloom.storage.session_store import SessionStore


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", default="chatloom.yaml", help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="chatloom",
        description="Multi-turn LLM chat runtime with streaming provider adapters",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # chat command
    chat_parser = subparsers.add_parser("chat", help="Start an interactive chat session")
    _add_config_args(chat_parser)
    chat_parser.add_argument("--new", action="store_true", help="Do not restore the recent session")

    # config-check command
    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    _add_config_args(check_parser)

    # providers command
    providers_parser = subparsers.add_parser("providers", help="List available providers")
    _add_config_args(providers_parser)

    # sessions command
    sessions_parser = subparsers.add_parser("sessions", help="List persisted sessions")
    _add_config_args(sessions_parser)
    sessions_parser.add_argument("-n", "--limit", type=int, default=20, help="Maximum sessions to show")

    # export command
    export_parser = subparsers.add_parser("export", help="Print a persisted session as JSON")
    _add_config_args(export_parser)
    export_parser.add_argument("session_id", help="Session to export")

    args = parser.parse_args(argv)

    if args.command is None:
        # Default to chat
        args.command = "chat"
        args.config = "chatloom.yaml"
        args.env = ".env"
        args.new = False

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "providers":
        _providers(args.config, args.env)
    elif args.command == "sessions":
        _sessions(_load(args.config, args.env), args.limit)
    elif args.command == "export":
        _export(_load(args.config, args.env), args.session_id)
    elif args.command == "chat":
        _chat(_load(args.config, args.env), restore=not args.new)


def _load(config_path: str, env_path: str) -> AppConfig:
    try:
        config = load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy chatloom.example.yaml to chatloom.yaml and edit it")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    setup_logging(config.log_level, json_output=config.log_json)
    return config


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    try:
        config = load_config(config_path, env_path)
        registry = ProviderRegistry.with_defaults(AiohttpTransport())
        adapter = registry.get_for(config.provider)
        print(f"Configuration valid: {config_path}")
        print(f"  Provider : {adapter.label} ({config.provider.provider})")
        print(f"  Model    : {config.provider.model}")
        print(f"  Endpoint : {config.provider.base_url or adapter.default_url}")
        print(f"  API key  : {'set' if config.provider.api_key else '(none)'}")
        print(f"  Memory   : {config.memory.max_messages} messages / {config.memory.max_tokens} tokens")
        if config.storage.enabled:
            print(f"  Storage  : {config.storage.db_path} (recent kept {config.storage.recent_ttl_days} days)")
        else:
            print("  Storage  : disabled")
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _providers(config_path: str, env_path: str) -> None:
    """Show registered providers, marking the configured one."""
    selected = None
    try:
        selected = load_config(config_path, env_path).provider.provider
    except FileNotFoundError:
        pass
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    registry = ProviderRegistry.with_defaults(AiohttpTransport())
    print("Providers")
    print("=" * 50)
    for name in registry.names():
        adapter = registry.get(name)
        marker = "*" if selected == name or selected in adapter.aliases else " "
        print(f"  {marker} {name:<10} {adapter.label:<10} {adapter.default_url}")
    print()


def _sessions(config: AppConfig, limit: int) -> None:
    async def _list() -> None:
        store = SessionStore(config.storage.db_path, recent_ttl_days=config.storage.recent_ttl_days)
        await store.initialize()
        try:
            sessions = await store.list_sessions(limit)
        finally:
            await store.close()

        if not sessions:
            print("No sessions found.")
            return
        for info in sessions:
            updated = datetime.fromtimestamp(info.updated_at / 1000).strftime("%Y-%m-%d %H:%M")
            print(f"  {info.id}  {updated}  {info.message_count:>4} msgs  {info.title or ''}")

    asyncio.run(_list())


def _export(config: AppConfig, session_id: str) -> None:
    async def _dump() -> str:
        store = SessionStore(config.storage.db_path, recent_ttl_days=config.storage.recent_ttl_days)
        await store.initialize()
        try:
            return await store.export_session(session_id)
        finally:
            await store.close()

    try:
        print(asyncio.run(_dump()))
    except ChatloomError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def _chat(config: AppConfig, restore: bool = True) -> None:
    """Interactive REPL with streamed output."""

    async def _async_main() -> None:
        app = ChatloomApp(config)
        await app.start(restore=restore)
        orchestrator = app.orchestrator
        loop = asyncio.get_running_loop()

        def _signal_handler() -> None:
            if not orchestrator.cancel():
                print("\n(use /quit or Ctrl-D to exit)", flush=True)

        try:
            loop.add_signal_handler(signal.SIGINT, _signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

        print(f"chatloom [{config.provider.provider}:{config.provider.model}] session {orchestrator.session_id}")
        if orchestrator.history():
            print(f"(restored {len(orchestrator.history())} messages)")

        callbacks = StreamCallbacks(on_chunk=lambda text: print(text, end="", flush=True))

        try:
            while True:
                try:
                    line = await asyncio.to_thread(input, "> ")
                except EOFError:
                    print()
                    break

                text = line.strip()
                if not text:
                    continue
                if text.lower() == "/quit":
                    break
                if text.lower() == "/reset":
                    orchestrator.clear()
                    print(f"Session reset. New session {orchestrator.session_id}")
                    continue
                if text.lower() == "/history":
                    for msg in orchestrator.history():
                        print(f"[{msg.role}] {msg.content[:200]}")
                    continue

                try:
                    await orchestrator.send_turn(text, callbacks)
                except ChatloomError as e:
                    print(f"\nError: {e}", file=sys.stderr)
                    continue
                if orchestrator.last_outcome == TurnState.CANCELLED:
                    print("\n(cancelled)")
                else:
                    print()
        finally:
            try:
                loop.remove_signal_handler(signal.SIGINT)
            except NotImplementedError:
                pass
            await app.stop()

    asyncio.run(_async_main())


if __name__ == "__main__":
    main()
