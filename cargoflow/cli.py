#!/usr/bin/env python3
"""
CargoFlow CLI

Operator command line for the cargo tracking ledger.

Usage:
    python -m cargoflow [--config FILE] [--format json|yaml|text] <command> [subcommand]

Commands:
    demo        Run a shipment end to end against an in-memory ledger
    config      Configuration management (show, get, validate, schema)

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from typing import Any, List, Optional

import yaml

from cargoflow import __version__
from cargoflow.config import LOG_FORMATS, LOG_LEVELS, ConfigError, get_config_manager
from cargoflow.errors import CargoFlowError
from cargoflow.observability import CargoLayer, configure_logging, get_logger

logger = get_logger("cli", CargoLayer.CLI)

DAY = 24 * 3600
HOUR = 3600


class OutputFormat(Enum):
    JSON = "json"
    YAML = "yaml"
    TEXT = "text"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        return yaml.safe_dump(json.loads(json.dumps(data, default=str)), default_flow_style=False, sort_keys=False)
    elif isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


class CargoFlowCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="cargoflow",
            description="Confidential cargo tracking ledger",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"cargoflow {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=[f.value for f in OutputFormat],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="YAML configuration file",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Only log warnings and errors",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        self._register_demo_command()
        self._register_config_commands()

    def _register_demo_command(self) -> None:
        demo = self.subparsers.add_parser("demo", help="Run a shipment end to end")
        demo.add_argument("--tracking-id", "-t", default="CARGO-001", help="Tracking id")
        demo.add_argument("--origin", default="Shanghai", help="Origin")
        demo.add_argument("--destination", default="Los Angeles", help="Destination")
        demo.add_argument("--weight-kg", "-w", default="2500", help="Cargo weight in kilograms")
        demo.add_argument("--contents", default="Electronics", help="Cargo contents")
        demo.add_argument("--no-decrypt", action="store_true", help="Leave confidential fields encrypted")

    def _register_config_commands(self) -> None:
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        get = config_sub.add_parser("get", help="Get configuration value")
        get.add_argument("path", help="Config path (e.g., ledger.min_dwell_seconds)")

        config_sub.add_parser("show", help="Show all configuration")
        config_sub.add_parser("validate", help="Validate configuration")
        config_sub.add_parser("schema", help="Export configuration schema")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        try:
            mgr = get_config_manager()
            if parsed.config:
                mgr.load_from_file(parsed.config)
            obs = mgr.config.observability
            level = "warning" if parsed.quiet else obs.log_level.get()
            log_format = obs.log_format.get()
            if level not in LOG_LEVELS or log_format not in LOG_FORMATS:
                raise ConfigError(f"Invalid logging settings: level={level!r} format={log_format!r}")
            configure_logging(level, log_format)

            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)
            if result is not None:
                print(format_output(result, fmt))
            return 0

        except CLIError as e:
            print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except ConfigError as e:
            print(f"Configuration error: {e}", file=sys.stderr)
            return 1

        except CargoFlowError as e:
            print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
            return 2

    def _dispatch(self, args: argparse.Namespace) -> Any:
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}".strip())

        return handler(args)

    # Config handlers
    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        return {"path": args.path, "value": get_config_manager().get(args.path)}

    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        return get_config_manager().config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        errors = get_config_manager().validate()
        if errors:
            raise CLIError("; ".join(errors), exit_code=1)
        return {"valid": True, "errors": []}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        return get_config_manager().export_schema()

    # Demo
    def _handle_demo(self, args: argparse.Namespace) -> Any:
        from cargoflow.client import CargoClient
        from cargoflow.identity import Account
        from cargoflow.ledger import ManualClock
        from cargoflow.models import ShipmentStatus
        from cargoflow.tracker import CargoTracker

        config = get_config_manager().config
        clock = ManualClock()
        tracker = CargoTracker(clock=clock, config=config)
        shipper = CargoClient(tracker, Account.from_seed(b"cargoflow-demo-shipper", label="shipper"))
        decrypt = not args.no_decrypt

        tid = args.tracking_id
        shipper.create_shipment(tid, args.origin, args.destination, clock.now() + 7 * DAY)
        shipper.add_event(
            tid, args.origin, ShipmentStatus.CREATED, "Cargo loaded",
            weight_kg=args.weight_kg, contents=args.contents,
        )
        clock.advance(config.ledger.min_dwell_seconds.get() + HOUR)
        shipper.update_status(tid, ShipmentStatus.IN_TRANSIT)
        clock.advance(2 * DAY)
        shipper.add_event(
            tid, "Pacific Ocean", ShipmentStatus.IN_TRANSIT, "Vessel underway",
            anomaly="Reefer temperature above threshold for 40 minutes",
        )

        logger.info("Demo completed", tracking_id=tid, events=tracker.get_event_count(tid))

        if args.format == OutputFormat.TEXT.value:
            return shipper.format_timeline(tid, decrypt=decrypt)
        return {
            "shipment": tracker.get_shipment(tid).to_dict(),
            "current_status": tracker.get_current_status(tid).label,
            "timeline": shipper.timeline(tid, decrypt=decrypt),
            "notifications": [r.notification.notification_type for r in tracker.log.read_all()],
        }


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    return CargoFlowCLI().run(argv)


if __name__ == "__main__":
    sys.exit(main())
