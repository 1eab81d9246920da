# Main Entry Point
#
# Runs the reference sync server under uvicorn:
#   python -m blackhole_vault serve --host 127.0.0.1 --port 8000

import argparse
import logging
import sys

from . import __version__
from .core import EventSeverity, EventType, get_audit_logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="blackhole-vault",
        description="Blackhole Vault - zero-knowledge vault sync server",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"Blackhole Vault v{__version__}",
    )

    sub = parser.add_subparsers(dest="command")
    serve = sub.add_parser("serve", help="Run the sync server")
    serve.add_argument("--host", default="127.0.0.1", help="Bind host (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--log-level", default="info", help="uvicorn log level (default: info)")
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command != "serve":
        parser.print_help()
        return 2

    import uvicorn

    logging.basicConfig(level=args.log_level.upper())
    print(f"Starting Blackhole Vault server on {args.host}:{args.port} (Ctrl+C to stop)")

    try:
        uvicorn.run(
            "blackhole_vault.api.main:create_app",
            factory=True,
            host=args.host,
            port=args.port,
            log_level=args.log_level,
        )
    except Exception as e:
        print(f"\n\nError: {str(e)}")
        get_audit_logger().log_event(
            event_type=EventType.SYSTEM_STOP,
            severity=EventSeverity.CRITICAL,
            message=f"Vault server crashed: {str(e)}",
        )
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
