"""Argument parsing, configuration loading, and command dispatch."""

from __future__ import annotations

import argparse
import logging
import sys

import yaml

from .config import AppConfig, load_config
from .context import Context
from .daemon import Daemon, build_manager
from .exceptions import ConfigError, LXCInfraError, is_terminal_error
from .logging_config import configure_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_TERMINAL = 2

COMMANDS = ("create", "reconfigure", "delete", "inspect", "templates", "run")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lxc-cluster-infra",
        description="Provision and reconcile the control plane load balancer of a cluster on LXD/Incus",
    )
    parser.add_argument(
        "-c", "--config",
        required=True,
        help="Path to the YAML configuration file",
    )
    parser.add_argument(
        "--validate",
        action="store_true",
        help="Validate the configuration file and exit",
    )
    parser.add_argument(
        "--initialized",
        action="store_true",
        help="With 'templates': render for a cluster whose control plane is already initialized",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="run",
        choices=COMMANDS,
        help="Action to perform (default: run)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Load config (minimal logging until config is loaded)
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_TERMINAL

    configure_logging(config.logging)

    if args.validate:
        logger.info("Configuration is valid")
        return EXIT_OK

    try:
        return _dispatch(args, config)
    except LXCInfraError as exc:
        if is_terminal_error(exc):
            logger.error("Fatal error: %s", exc)
            return EXIT_TERMINAL
        logger.error("Error: %s", exc)
        return EXIT_ERROR
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return EXIT_OK


def _dispatch(args: argparse.Namespace, config: AppConfig) -> int:
    if args.command == "run":
        Daemon(config).run()
        return EXIT_OK

    manager = build_manager(config)
    ctx = Context(
        logging.getLogger("lxc_cluster_infra"),
        values={"cluster": config.cluster.name, "namespace": config.cluster.namespace},
    )

    if args.command == "create":
        for address in manager.create(ctx):
            print(address)
    elif args.command == "reconfigure":
        manager.reconfigure(ctx)
    elif args.command == "delete":
        manager.delete(ctx)
    elif args.command == "inspect":
        print(yaml.safe_dump(manager.inspect(ctx), default_flow_style=False), end="")
    elif args.command == "templates":
        templates = manager.control_plane_instance_templates(args.initialized)
        print(yaml.safe_dump(templates, default_flow_style=False), end="")
    return EXIT_OK
