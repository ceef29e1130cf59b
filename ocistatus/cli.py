#!/usr/bin/env python3
"""
ocistatus CLI

Command-line access to signed reconciliation status.

Usage:
    ocistatus <command> [subcommand] [options]

Commands:
    observe          Print the latest verified status for a subject
    set              Sign and publish a status for a subject
    predicate-type   Show the predicate type used for an identity
    config           Configuration management

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

import yaml

from ocistatus import __version__
from ocistatus.config import get_config_manager
from ocistatus.identity import SignerIdentity
from ocistatus.manager import ManagerOptions, new, new_read_only, predicate_type_for
from ocistatus.observability import configure_logging
from ocistatus.status import Status
from ocistatus.store import LocalAttestationStore
from ocistatus.subject import Subject


class OutputFormat(Enum):
    """Output format options."""
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
        return json.dumps(data, indent=2, sort_keys=True, default=str)
    elif fmt == OutputFormat.YAML:
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=True)
    elif isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


class StatusCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="ocistatus",
            description="Signed reconciliation status for OCI artifacts",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"ocistatus {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=["json", "yaml", "text"],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress error output",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="Load configuration from this YAML file",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        """Register all command groups."""
        self._register_status_commands()
        self._register_config_commands()

    @staticmethod
    def _add_manager_arguments(cmd: argparse.ArgumentParser) -> None:
        cmd.add_argument("subject", help="Subject reference (repo@sha256:...)")
        cmd.add_argument("--identity", "-i", required=True, help="Reconciler identity")
        cmd.add_argument("--repository", "-r", help="Store attestations in this repository")
        cmd.add_argument("--store-dir", help="Use a local directory instead of the registry")
        cmd.add_argument("--instance", choices=["production", "staging"], help="Public sigstore instance")
        cmd.add_argument("--trust-config", help="Client trust config file for a private sigstore instance")

    def _register_status_commands(self) -> None:
        """Register status subcommands."""
        observe = self.subparsers.add_parser("observe", help="Print the latest verified status")
        self._add_manager_arguments(observe)
        observe.add_argument("--expected-subject", help="Signer subject (email or URI)")
        observe.add_argument("--expected-issuer", help="Signer OIDC issuer")

        set_cmd = self.subparsers.add_parser("set", help="Sign and publish a status")
        self._add_manager_arguments(set_cmd)
        set_cmd.add_argument(
            "--details", "-d", required=True,
            help="Status details as JSON, or @path to a JSON file",
        )

        ptype = self.subparsers.add_parser("predicate-type", help="Show the predicate type for an identity")
        ptype.add_argument("identity", help="Reconciler identity")

    def _register_config_commands(self) -> None:
        """Register config subcommands."""
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        # config show
        show = config_sub.add_parser("show", help="Show all configuration")
        show.add_argument("--secrets", action="store_true", help="Include secret values")

        # config validate
        config_sub.add_parser("validate", help="Validate configuration")

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
            else:
                mgr.load_defaults()
            configure_logging(
                level=mgr.config.observability.log_level.get(),
                fmt=mgr.config.observability.log_format.get(),
                stream=sys.stderr,
            )

            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except Exception as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return 1

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command.replace("-", "_")
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {args.command} {subcmd or ''}")

        return handler(args)

    @staticmethod
    def _options(args: argparse.Namespace, **overrides: Any) -> ManagerOptions:
        if args.repository:
            overrides["repository_override"] = args.repository
        if args.store_dir:
            overrides["store"] = LocalAttestationStore(Path(args.store_dir))
        if args.instance:
            overrides["instance"] = args.instance
        if args.trust_config:
            overrides["trust_config"] = args.trust_config
        return ManagerOptions.from_config(**overrides)

    # Status handlers
    def _handle_observe(self, args: argparse.Namespace) -> Any:
        overrides: dict = {}
        if args.expected_subject or args.expected_issuer:
            if not (args.expected_subject and args.expected_issuer):
                raise CLIError("--expected-subject and --expected-issuer must be given together", exit_code=2)
            overrides["expected_identity"] = SignerIdentity(args.expected_subject, args.expected_issuer)
        opts = self._options(args, **overrides)
        if opts.expected_identity is not None:
            manager = new_read_only(args.identity, options=opts)
        else:
            manager = new(args.identity, options=opts)

        session = manager.new_session(Subject.parse(args.subject))
        status = session.observed_state()
        return {
            "subject": str(session.subject),
            "location": str(session.location),
            "predicateType": manager.predicate_type,
            "status": None if status is None else {
                "observedGeneration": status.observed_generation,
                "details": status.details,
            },
        }

    def _handle_set(self, args: argparse.Namespace) -> Any:
        raw = args.details
        try:
            if raw.startswith("@"):
                raw = Path(raw[1:]).read_text(encoding="utf-8")
            details = json.loads(raw)
        except (OSError, ValueError) as e:
            raise CLIError(f"reading --details: {e}", exit_code=2) from e

        manager = new(args.identity, options=self._options(args))
        session = manager.new_session(Subject.parse(args.subject))
        status: Status[Any] = Status(details=details)
        session.set_actual_state(status)
        return {
            "subject": str(session.subject),
            "location": str(session.location),
            "predicateType": manager.predicate_type,
            "observedGeneration": status.observed_generation,
        }

    def _handle_predicate_type(self, args: argparse.Namespace) -> Any:
        if not args.identity.strip():
            raise CLIError("identity is required", exit_code=2)
        return {"identity": args.identity, "predicateType": predicate_type_for(args.identity)}

    # Config handlers
    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        return get_config_manager().config.to_dict(include_secrets=args.secrets)

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        errors = get_config_manager().validate()
        if errors:
            raise CLIError("; ".join(errors), exit_code=2)
        return {"valid": True, "errors": []}


def main() -> int:
    """CLI entry point."""
    cli = StatusCLI()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
