from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace

from .config import HubRuntimeConfig, apply_config_data, load_toml
from .logging_config import configure_logging
from .paths import default_config_path
from .service import HubService


def parse_port(text: str) -> int:
    """Return ``text`` as a port number in 1..65535 or exit with status 1."""
    try:
        port = int(str(text).strip())
    except ValueError:
        print("Port must be an integer.", file=sys.stderr)
        raise SystemExit(1)

    if port < 1 or port > 65535:
        print("Port must be between 1 and 65535.", file=sys.stderr)
        raise SystemExit(1)
    return port


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="chatd", description="Run a chat server")

    p.add_argument(
        "port",
        nargs="?",
        default=None,
        help="TCP port to listen on (default: 2019 or the config file's port)",
    )
    p.add_argument(
        "--config",
        default=None,
        help=f"Path to a TOML config file (default: {default_config_path()} if present)",
    )
    p.add_argument("--host", default=None, help="Address to bind (default: all interfaces)")
    p.add_argument(
        "--motd",
        default=None,
        help="Notice sent to each client right after its greeting is accepted",
    )
    p.add_argument(
        "--no-console",
        action="store_true",
        help="Do not read operator commands from stdin",
    )

    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def load_config(args: argparse.Namespace) -> HubRuntimeConfig:
    cfg = HubRuntimeConfig()

    config_path = args.config
    if config_path is None:
        default_path = str(default_config_path())
        if os.path.exists(default_path):
            config_path = default_path
    elif not os.path.exists(config_path):
        print(f"Config file not found: {config_path}", file=sys.stderr)
        raise SystemExit(1)

    if config_path:
        try:
            cfg = apply_config_data(cfg, load_toml(config_path))
        except ValueError as e:
            # tomllib.TOMLDecodeError is a ValueError too.
            print(f"Invalid config file {config_path}: {e}", file=sys.stderr)
            raise SystemExit(1)
        cfg = replace(cfg, config_path=config_path)

    if args.port is not None:
        cfg = replace(cfg, port=parse_port(args.port))
    if args.host is not None:
        cfg = replace(cfg, host=str(args.host))
    if args.motd is not None:
        cfg = replace(cfg, motd=str(args.motd) or None)
    if args.no_console:
        cfg = replace(cfg, console=False)

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)
    cfg = load_config(args)

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    print(f"Starting server on port {cfg.port}.")
    svc = HubService(cfg)
    try:
        svc.start()
    except OSError as e:
        print(f"Could not listen on port {cfg.port}: {e}", file=sys.stderr)
        raise SystemExit(1)
    svc.run_forever()


if __name__ == "__main__":
    main()
