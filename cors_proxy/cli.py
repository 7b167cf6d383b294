"""Command-line interface for CORS Proxy Buddy."""

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict

from cors_proxy import __version__
from cors_proxy.core.proxy import CorsProxy


def load_config(config_path: Path) -> Dict[str, Any]:
    """Load configuration from JSON file."""
    try:
        with open(config_path, "r") as f:
            return json.load(f)
    except FileNotFoundError:
        print(f"Error: Configuration file not found: {config_path}")
        sys.exit(1)
    except json.JSONDecodeError as e:
        print(f"Error: Invalid JSON in configuration file: {e}")
        sys.exit(1)


def create_default_config() -> Dict[str, Any]:
    """Create a default configuration."""
    log_level = os.environ.get("CORS_PROXY_LOG_LEVEL", "INFO")

    return {
        "server": {"host": "127.0.0.1", "port": 8080, "request_timeout": 30},
        "cache": {"max_entries": 500, "ttl_seconds": 300},
        "throttling": {"window_seconds": 10, "max_requests": 10},
        "logging": {"level": log_level},
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cors-proxy",
        description="CORS Proxy Buddy - Forwarding HTTP proxy with CORS headers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  cors-proxy --config config.json                   # Start with config file
  cors-proxy --port 9090 --host 0.0.0.0             # Custom host/port
  cors-proxy --generate-config                      # Generate default config

Usage:
  GET http://<host>:<port>/proxy?url=https://example.com/data.json
        """,
    )
    parser.add_argument("--config", "-c", type=Path, help="Path to configuration JSON file")
    parser.add_argument("--host", help="Host to bind to (default: 127.0.0.1)")
    parser.add_argument("--port", "-p", type=int, help="Port to bind to (default: 8080)")
    parser.add_argument("--generate-config", action="store_true", help="Generate a default configuration file and exit")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: INFO)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv=None):
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    if args.generate_config:
        config = create_default_config()
        config_file = Path("cors_proxy_config.json")
        with open(config_file, "w") as f:
            json.dump(config, f, indent=2)
        print(f"Generated default configuration: {config_file}")
        return

    if args.config:
        config = load_config(args.config)
    else:
        config = create_default_config()
        print("Using default configuration. Use --generate-config to create a config file.")

    # Override with CLI arguments
    if args.host:
        config.setdefault("server", {})["host"] = args.host
    if args.port is not None:
        config.setdefault("server", {})["port"] = args.port
    if args.log_level:
        config.setdefault("logging", {})["level"] = args.log_level

    try:
        proxy = CorsProxy(config)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    host, port = proxy.get_address()
    try:
        print(f"Starting CORS Proxy Buddy on {host}:{port}")
        print("\nPress Ctrl+C to stop")
        sys.stdout.flush()
        proxy.start(blocking=True)
    except KeyboardInterrupt:
        print("\nShutting down...")
        proxy.stop()
    except OSError as e:
        print(f"Error binding to {host}:{port}: {e}")
        if "Address already in use" in str(e):
            print(f"Port {port} is already in use. Try a different port with --port option.")
        elif "Permission denied" in str(e):
            print(f"Permission denied to bind to {host}:{port}. Try using a port above 1024.")
        sys.exit(1)


if __name__ == "__main__":
    main()
