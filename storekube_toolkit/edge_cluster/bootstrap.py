from __future__ import annotations

import base64
import binascii
import tempfile
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from .. import runner as command_runner
from ..runner import CommandError
from .config import StoreConfig

KUBECTL_RELEASE_URL = "https://dl.k8s.io/release"
KUBECTL_STABLE_URL = f"{KUBECTL_RELEASE_URL}/stable.txt"
KUBECTL_INSTALL_PATH = "/usr/local/bin/kubectl"
FLUX_INSTALL_URL = "https://fluxcd.io/install.sh"
DNS_SETTLE_SECONDS = 5
DNS_WAIT_TIMEOUT = "300s"

GITOPS_SOURCE_NAME = "gitops"
GITOPS_USERNAME = "gitops"
APPS_KUSTOMIZATION = "apps"
ARC_EXTENSION = "connectedk8s"
ARC_PROVIDERS: tuple[str, ...] = (
    "Microsoft.Kubernetes",
    "Microsoft.KubernetesConfiguration",
    "Microsoft.ExtendedLocation",
)
SERVICE_ACCOUNT = "admin-user"
CLUSTER_ROLE_BINDING = "admin-user-binding"
KEYVAULT_SECRET = "secrets-store-creds"
TOKEN_START_MARKER = "Token to connect to Azure Arc starts here"
TOKEN_END_MARKER = "Token to connect to Azure Arc ends here"


class BootstrapError(RuntimeError):
    """Raised when the bootstrap workflow cannot complete."""


@dataclass(slots=True)
class Step:
    """A named stage of the provisioning pipeline."""

    name: str
    action: Callable[[], None]


class CommandRunner:
    """Execute external tools with dry-run support and secret masking."""

    def __init__(
        self,
        *,
        dry_run: bool,
        secrets: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
    ):
        self.dry_run = dry_run
        self.secrets = tuple(secrets)
        self.env = dict(env) if env is not None else None

    def run(self, command: Sequence[str], *, cwd: Path | str | None = None) -> None:
        self.run_all([command], cwd=cwd)

    def run_all(
        self, commands: Iterable[Sequence[str]], *, cwd: Path | str | None = None
    ) -> None:
        command_runner.run_commands(
            commands, dry_run=self.dry_run, env=self.env, cwd=cwd, secrets=self.secrets
        )

    def capture(self, command: Sequence[str]) -> str:
        return command_runner.capture(
            command, dry_run=self.dry_run, env=self.env, secrets=self.secrets
        )

    def succeeds(self, command: Sequence[str]) -> bool:
        return command_runner.succeeds(command, dry_run=self.dry_run, env=self.env)

    def which(self, tool: str) -> str | None:
        return command_runner.which(tool)

    def pause(self, seconds: float) -> None:
        if not self.dry_run:
            time.sleep(seconds)


def _log(message: str) -> None:
    print(f"==> {message}", flush=True)


def build_microk8s_install_commands() -> list[list[str]]:
    return [
        ["sudo", "snap", "install", "microk8s", "--classic"],
        ["sudo", "microk8s", "status", "--wait-ready"],
    ]


def build_kubectl_version_command() -> list[str]:
    return ["curl", "-fsSL", KUBECTL_STABLE_URL]


def build_kubectl_install_commands(version: str, arch: str = "amd64") -> list[list[str]]:
    url = f"{KUBECTL_RELEASE_URL}/{version}/bin/linux/{arch}/kubectl"
    return [
        ["curl", "-fsSLO", url],
        [
            "sudo",
            "install",
            "-o",
            "root",
            "-g",
            "root",
            "-m",
            "0755",
            "kubectl",
            KUBECTL_INSTALL_PATH,
        ],
    ]


def build_dns_commands() -> tuple[list[str], list[str]]:
    """Return the enable command and the readiness wait command."""

    return (
        ["sudo", "microk8s", "enable", "dns"],
        [
            "kubectl",
            "wait",
            "--for=condition=containersReady",
            "pod",
            "-l",
            "k8s-app=kube-dns",
            "-n",
            "kube-system",
            f"--timeout={DNS_WAIT_TIMEOUT}",
        ],
    )


def build_flux_install_command() -> list[str]:
    return ["bash", "-c", f"set -o pipefail; curl -fsSL {FLUX_INSTALL_URL} | sudo bash"]


def build_flux_commands(config: StoreConfig) -> list[list[str]]:
    url = config.gitops_url
    return [
        [
            "flux",
            "bootstrap",
            "git",
            "--url",
            url,
            "--branch",
            config.gitops_bootstrap_branch,
            "--password",
            config.gitops_pat,
            "--token-auth=true",
            "--path",
            config.bootstrap_path,
        ],
        [
            "flux",
            "create",
            "secret",
            "git",
            GITOPS_SOURCE_NAME,
            "--url",
            url,
            "--username",
            GITOPS_USERNAME,
            "--password",
            config.gitops_pat,
        ],
        [
            "flux",
            "create",
            "source",
            "git",
            GITOPS_SOURCE_NAME,
            "--url",
            url,
            "--branch",
            config.gitops_branch,
            "--secret-ref",
            GITOPS_SOURCE_NAME,
        ],
        [
            "flux",
            "create",
            "kustomization",
            APPS_KUSTOMIZATION,
            "--source",
            f"GitRepository/{GITOPS_SOURCE_NAME}",
            "--path",
            config.apps_path,
            "--prune=true",
            "--interval",
            config.flux_interval,
        ],
        ["flux", "reconcile", "source", "git", GITOPS_SOURCE_NAME],
    ]


def build_az_login_command(config: StoreConfig) -> list[str]:
    return [
        "az",
        "login",
        "--service-principal",
        "--username",
        config.sp_id,
        "--password",
        config.sp_secret,
        "--tenant",
        config.tenant_id,
        "--output",
        "none",
    ]


def build_arc_prerequisite_commands() -> list[list[str]]:
    commands = [["az", "extension", "add", "--name", ARC_EXTENSION]]
    for namespace in ARC_PROVIDERS:
        commands.append(["az", "provider", "register", "--namespace", namespace])
    return commands


def build_group_exists_command(config: StoreConfig) -> list[str]:
    return ["az", "group", "exists", "--name", config.resource_group]


def build_group_create_command(config: StoreConfig) -> list[str]:
    return [
        "az",
        "group",
        "create",
        "--name",
        config.resource_group,
        "--location",
        config.resource_group_location,
        "--output",
        "table",
    ]


def build_arc_show_command(config: StoreConfig) -> list[str]:
    return [
        "az",
        "connectedk8s",
        "show",
        "--name",
        config.store_name,
        "--resource-group",
        config.resource_group,
        "--output",
        "none",
    ]


def build_arc_connect_command(config: StoreConfig) -> list[str]:
    command = [
        "az",
        "connectedk8s",
        "connect",
        "--name",
        config.store_name,
        "--resource-group",
        config.resource_group,
    ]
    if config.store_tags:
        command.append("--tags")
        command.extend(config.store_tags)
    return command


def build_service_account_commands() -> list[tuple[list[str], list[str]]]:
    """Return ``(check, create)`` pairs for the Arc service account."""

    return [
        (
            ["kubectl", "get", "serviceaccount", SERVICE_ACCOUNT],
            ["kubectl", "create", "serviceaccount", SERVICE_ACCOUNT],
        ),
        (
            ["kubectl", "get", "clusterrolebinding", CLUSTER_ROLE_BINDING],
            [
                "kubectl",
                "create",
                "clusterrolebinding",
                CLUSTER_ROLE_BINDING,
                "--clusterrole",
                "cluster-admin",
                "--serviceaccount",
                f"default:{SERVICE_ACCOUNT}",
            ],
        ),
    ]


def build_keyvault_secret_command(config: StoreConfig) -> list[str]:
    return [
        "kubectl",
        "create",
        "secret",
        "generic",
        KEYVAULT_SECRET,
        "--from-literal",
        f"clientid={config.sp_id}",
        "--from-literal",
        f"clientsecret={config.sp_secret}",
    ]


def read_service_account_token(runner: CommandRunner) -> str:
    """Return the bearer token for the Arc service account.

    Clusters older than Kubernetes 1.24 mint a token secret per service
    account; newer ones do not, so fall back to ``kubectl create token``.
    """

    secret_name = runner.capture(
        [
            "kubectl",
            "get",
            "serviceaccount",
            SERVICE_ACCOUNT,
            "-o",
            "jsonpath={$.secrets[0].name}",
        ]
    )
    if not secret_name:
        return runner.capture(["kubectl", "create", "token", SERVICE_ACCOUNT])

    encoded = runner.capture(
        ["kubectl", "get", "secret", secret_name, "-o", "jsonpath={$.data.token}"]
    )
    try:
        return base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise BootstrapError(f"Token secret {secret_name} is not valid base64.") from exc


def _check_az_cli(runner: CommandRunner) -> None:
    if runner.which("az") is None:
        if runner.dry_run:
            _log("Azure CLI (az) not found; continuing because this is a dry run.")
            return
        raise BootstrapError(
            "Azure CLI (az) could not be found. Install it or pass --skip-arc."
        )
    _log("Azure CLI is present.")


def _install_kubectl(config: StoreConfig, runner: CommandRunner) -> None:
    version = runner.capture(build_kubectl_version_command())
    if not version:
        if not runner.dry_run:
            raise BootstrapError("Could not resolve the stable kubectl release.")
        version = "<stable>"
    with tempfile.TemporaryDirectory(prefix="storekube-kubectl-") as tmpdir:
        runner.run_all(build_kubectl_install_commands(version, config.kubectl_arch), cwd=tmpdir)


def _write_kubeconfig(config: StoreConfig, runner: CommandRunner) -> None:
    content = runner.capture(["sudo", "microk8s", "config"])
    if runner.dry_run:
        _log(f"DRY-RUN: would write kubeconfig to {config.kubeconfig_path}")
        return
    if not content:
        raise BootstrapError("microk8s config returned an empty kubeconfig.")
    path = config.kubeconfig_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content + "\n")
    path.chmod(0o600)
    _log(f"Wrote kubeconfig to {path}")


def _enable_dns(runner: CommandRunner) -> None:
    enable, wait = build_dns_commands()
    runner.run(enable)
    runner.pause(DNS_SETTLE_SECONDS)
    runner.run(wait)


def _install_flux(runner: CommandRunner) -> None:
    existing = runner.which("flux")
    if existing:
        _log(f"Flux CLI already installed at {existing}; skipping install.")
        return
    runner.run(build_flux_install_command())


def _ensure_resource_group(config: StoreConfig, runner: CommandRunner) -> None:
    exists = runner.capture(build_group_exists_command(config)).strip().lower()
    if exists == "true":
        _log(f"Resource group {config.resource_group} already exists.")
        return
    runner.run(build_group_create_command(config))
    if not runner.dry_run:
        _log(f"Resource group {config.resource_group} created.")


def _connect_arc(config: StoreConfig, runner: CommandRunner) -> None:
    if runner.succeeds(build_arc_show_command(config)):
        _log(f"{config.store_name} is already connected to Azure Arc.")
        return
    runner.run(build_arc_connect_command(config))


def _ensure_absent_then_create(
    runner: CommandRunner, check: list[str], create: list[str]
) -> None:
    if runner.succeeds(check):
        _log(f"{' '.join(check[2:])} already exists; skipping create.")
        return
    runner.run(create)


def _create_service_account(runner: CommandRunner) -> None:
    for check, create in build_service_account_commands():
        _ensure_absent_then_create(runner, check, create)
    print_arc_token(runner)


def print_arc_token(runner: CommandRunner) -> None:
    token = read_service_account_token(runner)
    if runner.dry_run:
        _log("DRY-RUN: token is not generated.")
        return
    if not token:
        raise BootstrapError(f"Service account {SERVICE_ACCOUNT} returned an empty token.")
    print(f"\n{TOKEN_START_MARKER}")
    print(token)
    print(f"{TOKEN_END_MARKER}\n", flush=True)


def _create_keyvault_secret(config: StoreConfig, runner: CommandRunner) -> None:
    _ensure_absent_then_create(
        runner,
        ["kubectl", "get", "secret", KEYVAULT_SECRET],
        build_keyvault_secret_command(config),
    )


def build_steps(
    config: StoreConfig,
    runner: CommandRunner,
    *,
    skip_flux: bool = False,
    skip_arc: bool = False,
) -> list[Step]:
    steps: list[Step] = []
    if not skip_arc:
        steps.append(Step("Check Azure CLI", lambda: _check_az_cli(runner)))
    steps.extend(
        [
            Step(
                "Install MicroK8s",
                lambda: runner.run_all(build_microk8s_install_commands()),
            ),
            Step("Install kubectl", lambda: _install_kubectl(config, runner)),
            Step("Write kubeconfig", lambda: _write_kubeconfig(config, runner)),
            Step("Enable MicroK8s DNS", lambda: _enable_dns(runner)),
        ]
    )
    if not skip_flux:
        steps.extend(
            [
                Step("Install Flux", lambda: _install_flux(runner)),
                Step(
                    "Bootstrap Flux GitOps",
                    lambda: runner.run_all(build_flux_commands(config)),
                ),
            ]
        )
    if not skip_arc:
        steps.extend(
            [
                Step("Log in to Azure", lambda: runner.run(build_az_login_command(config))),
                Step(
                    "Register Azure Arc prerequisites",
                    lambda: runner.run_all(build_arc_prerequisite_commands()),
                ),
                Step("Ensure resource group", lambda: _ensure_resource_group(config, runner)),
                Step("Connect cluster to Azure Arc", lambda: _connect_arc(config, runner)),
            ]
        )
    steps.extend(
        [
            Step("Create Arc service account token", lambda: _create_service_account(runner)),
            Step(
                "Create Key Vault credentials secret",
                lambda: _create_keyvault_secret(config, runner),
            ),
        ]
    )
    return steps


def run_steps(steps: Sequence[Step]) -> None:
    """Run ``steps`` in order, stopping at the first failure."""

    total = len(steps)
    for index, step in enumerate(steps, start=1):
        _log(f"[{index}/{total}] {step.name}")
        try:
            step.action()
        except (BootstrapError, CommandError, OSError) as exc:
            raise BootstrapError(f"Step '{step.name}' failed: {exc}") from exc
    _log(f"Completed {total} steps.")


def make_runner(config: StoreConfig, *, dry_run: bool) -> CommandRunner:
    return CommandRunner(
        dry_run=dry_run,
        secrets=config.secrets(),
        env={"KUBECONFIG": str(config.kubeconfig_path)},
    )


def run_bootstrap(
    config: StoreConfig,
    *,
    dry_run: bool,
    skip_flux: bool = False,
    skip_arc: bool = False,
) -> None:
    runner = make_runner(config, dry_run=dry_run)
    steps = build_steps(config, runner, skip_flux=skip_flux, skip_arc=skip_arc)
    run_steps(steps)


__all__ = [
    "BootstrapError",
    "CommandRunner",
    "Step",
    "build_arc_connect_command",
    "build_arc_prerequisite_commands",
    "build_az_login_command",
    "build_dns_commands",
    "build_flux_commands",
    "build_flux_install_command",
    "build_group_create_command",
    "build_group_exists_command",
    "build_keyvault_secret_command",
    "build_kubectl_install_commands",
    "build_microk8s_install_commands",
    "build_service_account_commands",
    "build_steps",
    "make_runner",
    "print_arc_token",
    "read_service_account_token",
    "run_bootstrap",
    "run_steps",
]
