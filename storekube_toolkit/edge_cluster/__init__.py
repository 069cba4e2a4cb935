"""Provisioning helpers for single-node store edge clusters."""

from .bootstrap import (
    BootstrapError,
    CommandRunner,
    Step,
    build_arc_connect_command,
    build_az_login_command,
    build_flux_commands,
    build_keyvault_secret_command,
    build_steps,
    read_service_account_token,
    run_bootstrap,
    run_steps,
)
from .config import (
    OPTIONAL_VARIABLES,
    REQUIRED_VARIABLES,
    MissingConfigurationError,
    StoreConfig,
    load_store_config,
    parse_tags,
)

__all__ = [
    "BootstrapError",
    "CommandRunner",
    "MissingConfigurationError",
    "OPTIONAL_VARIABLES",
    "REQUIRED_VARIABLES",
    "Step",
    "StoreConfig",
    "build_arc_connect_command",
    "build_az_login_command",
    "build_flux_commands",
    "build_keyvault_secret_command",
    "build_steps",
    "load_store_config",
    "parse_tags",
    "read_service_account_token",
    "run_bootstrap",
    "run_steps",
]
