"""Provision a store edge cluster from exported environment variables."""

from __future__ import annotations

import argparse
import sys
from typing import Sequence

from storekube_toolkit import preconditions
from storekube_toolkit.edge_cluster import bootstrap as core
from storekube_toolkit.edge_cluster import config as settings

BootstrapError = core.BootstrapError
MissingConfigurationError = settings.MissingConfigurationError
REQUIRED_VARIABLES = settings.REQUIRED_VARIABLES
load_store_config = settings.load_store_config
run_bootstrap = core.run_bootstrap

__all__ = [
    "BootstrapError",
    "MissingConfigurationError",
    "REQUIRED_VARIABLES",
    "load_store_config",
    "run_bootstrap",
    "parse_args",
    "main",
]


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--env-file",
        help="Path to a dotenv file providing defaults for the required variables.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Preview commands without executing them.",
    )
    parser.add_argument(
        "--skip-flux",
        action="store_true",
        help="Skip the Flux install and GitOps wiring.",
    )
    parser.add_argument(
        "--skip-arc",
        action="store_true",
        help="Skip the Azure Arc registration.",
    )
    return parser.parse_args(list(argv) if argv is not None else None)


def main(argv: Sequence[str] | None = None) -> int:
    try:
        args = parse_args(argv)
        environment = preconditions.environment_lookup(args.env_file)
        config = load_store_config(environment)
        run_bootstrap(
            config,
            dry_run=bool(args.dry_run),
            skip_flux=bool(args.skip_flux),
            skip_arc=bool(args.skip_arc),
        )
    except MissingConfigurationError as exc:
        for line in exc.result.describe():
            print(line, file=sys.stderr)
        return 1
    except (BootstrapError, preconditions.ConfigurationError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
