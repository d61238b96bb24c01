# Main Entry Point
#
# python -m localpass [--host H] [--port P] [--data-dir DIR]
# Serves the local vault API with uvicorn. Settings come from LOCALPASS_*
# environment variables (and .env); command line flags override them.

import argparse
import dataclasses
import sys
from pathlib import Path

from . import __version__
from .config import load_settings


def main():
    """Main entry point for LocalPass."""
    try:
        settings = load_settings()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    parser = argparse.ArgumentParser(
        description="LocalPass - local encrypted credential vault (API server)",
    )

    parser.add_argument(
        "--host",
        default=settings.host,
        help=f"API host (default: {settings.host})"
    )

    parser.add_argument(
        "--port",
        type=int,
        default=settings.port,
        help=f"API port (default: {settings.port})"
    )

    parser.add_argument(
        "--data-dir",
        type=Path,
        default=settings.data_dir,
        help=f"Directory holding the vault database (default: {settings.data_dir})"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"LocalPass v{__version__}"
    )

    args = parser.parse_args()
    settings = dataclasses.replace(
        settings, host=args.host, port=args.port, data_dir=args.data_dir
    )

    from .api.main import configure_app, start_api_server
    from .core import EventSeverity, EventType, log_security_event

    configure_app(settings)

    print("=" * 60)
    print(f"  LocalPass v{__version__}")
    print(f"  Vault:  {settings.db_path}")
    print(f"  API:    http://{settings.host}:{settings.port}/api/vault")
    print("  Press Ctrl+C to stop")
    print("=" * 60)

    try:
        start_api_server(host=settings.host, port=settings.port)
    except KeyboardInterrupt:
        print("\n\nShutting down...")
    except Exception as e:
        print(f"\n\nError: {str(e)}", file=sys.stderr)
        log_security_event(
            EventType.SYSTEM_STOP,
            EventSeverity.CRITICAL,
            f"LocalPass server crashed: {str(e)}"
        )
        sys.exit(1)


if __name__ == "__main__":
    main()
