"""Entry points for the storekube CLI."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Sequence

from . import preconditions
from .edge_cluster import bootstrap, config
from .runner import CommandError


def _add_env_file_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--env-file",
        help="Read defaults from a dotenv file; exported variables take precedence.",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="storekube",
        description="Provision a store edge cluster with MicroK8s, Flux, and Azure Arc.",
    )
    parser.set_defaults(handler=None)

    subparsers = parser.add_subparsers(dest="command")

    check_parser = subparsers.add_parser(
        "check-env",
        help="Report every required variable that is missing or empty.",
    )
    _add_env_file_argument(check_parser)
    check_parser.add_argument(
        "--names",
        nargs="+",
        metavar="NAME",
        help="Check these names instead of the provisioning variables.",
    )
    check_parser.set_defaults(handler=_handle_check_env)

    bootstrap_parser = subparsers.add_parser(
        "bootstrap",
        help="Install MicroK8s, bootstrap Flux, and connect the cluster to Azure Arc.",
    )
    _add_env_file_argument(bootstrap_parser)
    bootstrap_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the commands without executing them.",
    )
    bootstrap_parser.add_argument(
        "--skip-flux",
        action="store_true",
        help="Skip installing Flux and wiring the GitOps repository.",
    )
    bootstrap_parser.add_argument(
        "--skip-arc",
        action="store_true",
        help="Skip the Azure login and Azure Arc registration.",
    )
    bootstrap_parser.set_defaults(handler=_handle_bootstrap)

    token_parser = subparsers.add_parser(
        "token",
        help="Print the bearer token Azure Arc uses to reach the cluster.",
    )
    _add_env_file_argument(token_parser)
    token_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the kubectl invocations without executing them.",
    )
    token_parser.set_defaults(handler=_handle_token)

    show_parser = subparsers.add_parser(
        "show-config",
        help="Print the resolved configuration with secrets masked.",
    )
    _add_env_file_argument(show_parser)
    show_parser.set_defaults(handler=_handle_show_config)

    return parser


def _report_missing(result: preconditions.ValidationResult) -> None:
    for line in result.describe():
        print(line, file=sys.stderr)


def _load_environment(args: argparse.Namespace) -> dict[str, str | None]:
    return preconditions.environment_lookup(getattr(args, "env_file", None))


def _load_config(args: argparse.Namespace) -> config.StoreConfig:
    return config.load_store_config(_load_environment(args))


def _handle_check_env(args: argparse.Namespace) -> int:
    try:
        environment = _load_environment(args)
    except preconditions.ConfigurationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    names = list(args.names) if args.names else list(config.REQUIRED_VARIABLES)
    result = preconditions.validate_required(names, environment)
    if not result.ok:
        _report_missing(result)
        return 1
    print(f"All {len(names)} required variables are set.")
    return 0


def _handle_bootstrap(args: argparse.Namespace) -> int:
    try:
        store = _load_config(args)
    except config.MissingConfigurationError as exc:
        _report_missing(exc.result)
        return 1
    except preconditions.ConfigurationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    try:
        bootstrap.run_bootstrap(
            store,
            dry_run=bool(args.dry_run),
            skip_flux=bool(args.skip_flux),
            skip_arc=bool(args.skip_arc),
        )
    except bootstrap.BootstrapError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


def _handle_token(args: argparse.Namespace) -> int:
    try:
        environment = _load_environment(args)
    except preconditions.ConfigurationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    kubeconfig = environment.get("KUBECONFIG_PATH") or config.OPTIONAL_VARIABLES[
        "KUBECONFIG_PATH"
    ]
    runner = bootstrap.CommandRunner(
        dry_run=bool(args.dry_run),
        env={"KUBECONFIG": str(Path(kubeconfig).expanduser())},
    )
    try:
        bootstrap.print_arc_token(runner)
    except (bootstrap.BootstrapError, CommandError, OSError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


def _handle_show_config(args: argparse.Namespace) -> int:
    try:
        store = _load_config(args)
    except config.MissingConfigurationError as exc:
        _report_missing(exc.result)
        return 1
    except preconditions.ConfigurationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    for key, value in store.masked().items():
        print(f"{key}={value}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 1

    return handler(args)
