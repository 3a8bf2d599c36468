"""
Command line entry point.

    switchboard serve [--config FILE] [--host H] [--port P] [--storage-dir DIR] [--console]
    switchboard attend [--url ws://127.0.0.1:8000/ws] [--api-key KEY]
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

from . import __version__
from .config import Config
from .console import log


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def cmd_serve(args) -> int:
    import uvicorn

    from .app import create_app

    try:
        config = Config.load(args.config)
    except (OSError, ValueError) as e:
        log(f"Invalid configuration: {e}", "ERR")
        return 2

    overrides = {}
    if args.host:
        overrides["host"] = args.host
    if args.port:
        overrides["port"] = args.port
    if args.storage_dir:
        overrides["storage_dir"] = str(args.storage_dir)
    config = config.updated(overrides)

    configure_logging(config.log_level)
    log(f"Serving on http://{config.host}:{config.port}", "OK")
    app = create_app(config, console=args.console)
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())
    return 0


def cmd_attend(args) -> int:
    from .operator_client import run_client

    configure_logging("WARNING")
    try:
        api_key = args.api_key or Config.from_env().api_key
        return asyncio.run(run_client(args.url, api_key))
    except KeyboardInterrupt:
        log("Interrupted by user", "WARN")
        return 1


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="switchboard",
        description="Agent Switchboard — let many AI agents ask one human for input",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Agents:
  POST /api/ask            {"question": "...", "context": "...", "choices": [{"label": "..."}]}
  POST /api/ask-questions  {"questions": [{"header": "...", "question": "...", "options": [...]}]}

Operator:
  Run 'switchboard attend' in another terminal (or on another machine) to answer.
  Set SWITCHBOARD_API_KEY on both sides before exposing the service.
"""
    )
    parser.add_argument('--version', action='version', version=f'switchboard {__version__}')
    sub = parser.add_subparsers(dest='command')

    serve = sub.add_parser('serve', help='Run the switchboard service')
    serve.add_argument('--config', type=Path, help='YAML config file (default: $SWITCHBOARD_CONFIG)')
    serve.add_argument('--host', type=str, help='Bind address (default: 127.0.0.1)')
    serve.add_argument('--port', type=int, help='Port (default: 8000)')
    serve.add_argument('--storage-dir', type=Path, help='Where to keep the answer queue and history')
    serve.add_argument('--console', action='store_true', help='Also print requests to this terminal')
    serve.set_defaults(func=cmd_serve)

    attend = sub.add_parser('attend', help='Answer agents from this terminal')
    attend.add_argument('--url', type=str, default='ws://127.0.0.1:8000/ws',
                        help='Switchboard WebSocket URL (default: ws://127.0.0.1:8000/ws)')
    attend.add_argument('--api-key', type=str, default='', help='API key (default: $SWITCHBOARD_API_KEY)')
    attend.set_defaults(func=cmd_attend)

    args = parser.parse_args(argv)
    if not getattr(args, 'func', None):
        parser.print_help()
        sys.exit(2)
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
