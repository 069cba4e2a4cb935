from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from scripts import store_cluster_bootstrap as bootstrap_script
from storekube_toolkit import runner
from storekube_toolkit.edge_cluster import bootstrap, config


@pytest.fixture
def store(store_env: dict[str, str]) -> config.StoreConfig:
    return config.load_store_config(store_env)


def test_load_store_config_reads_required_and_default_values(store_env) -> None:
    store = config.load_store_config(store_env)

    assert store.store_name == "store-042"
    assert store.store_tags == ["region=emea", "format=express"]
    assert store.gitops_url == "https://github.com/contoso/store-gitops"
    assert store.bootstrap_path == "./deploy/bootstrap/store-042"
    assert store.apps_path == "./deploy/apps/store-042"
    assert store.gitops_bootstrap_branch == "main"
    assert store.flux_interval == "1m"
    assert store.kubeconfig_path == Path("~/.kube/config").expanduser()


def test_load_store_config_honours_optional_overrides(store_env, tmp_path: Path) -> None:
    store_env.update(
        {
            "GITOPS_HOST": "https://git.example.com/",
            "GITOPS_BOOTSTRAP_BRANCH": "trunk",
            "KUBECTL_ARCH": "arm64",
            "FLUX_INTERVAL": "5m",
            "KUBECONFIG_PATH": str(tmp_path / "config"),
        }
    )

    store = config.load_store_config(store_env)

    assert store.gitops_url == "https://git.example.com/contoso/store-gitops"
    assert store.gitops_bootstrap_branch == "trunk"
    assert store.kubectl_arch == "arm64"
    assert store.flux_interval == "5m"
    assert store.kubeconfig_path == tmp_path / "config"


def test_load_store_config_reports_every_missing_variable(store_env) -> None:
    store_env["AZ_SP_SECRET"] = ""
    del store_env["GITOPS_PAT"]
    del store_env["STORE_NAME"]

    with pytest.raises(config.MissingConfigurationError) as excinfo:
        config.load_store_config(store_env)

    assert excinfo.value.result.missing == ("STORE_NAME", "AZ_SP_SECRET", "GITOPS_PAT")
    assert "STORE_NAME, AZ_SP_SECRET, GITOPS_PAT" in str(excinfo.value)


def test_whitespace_only_tags_are_rejected(store_env) -> None:
    store_env["STORE_TAGS"] = "   "

    with pytest.raises(config.ConfigurationError, match="STORE_TAGS"):
        config.load_store_config(store_env)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("env=prod", ["env=prod"]),
        ("env=prod, tier=gold", ["env=prod", "tier=gold"]),
        ("env=prod tier=gold\tlegacy", ["env=prod", "tier=gold", "legacy"]),
        (",,", []),
    ],
)
def test_parse_tags(raw: str, expected: list[str]) -> None:
    assert config.parse_tags(raw) == expected


def test_masked_view_hides_secrets(store: config.StoreConfig) -> None:
    masked = store.masked()

    assert masked["AZ_SP_SECRET"] == "***"
    assert masked["GITOPS_PAT"] == "***"
    assert masked["STORE_NAME"] == "store-042"
    assert "sp-secret-value" not in masked.values()
    assert set(store.secrets()) == {"sp-secret-value", "ghp_pat_value"}


def test_build_flux_commands_wire_the_gitops_repository(store: config.StoreConfig) -> None:
    commands = bootstrap.build_flux_commands(store)

    assert [command[:3] for command in commands] == [
        ["flux", "bootstrap", "git"],
        ["flux", "create", "secret"],
        ["flux", "create", "source"],
        ["flux", "create", "kustomization"],
        ["flux", "reconcile", "source"],
    ]
    bootstrap_cmd, secret_cmd, source_cmd, kustomization_cmd, _ = commands
    assert "--token-auth=true" in bootstrap_cmd
    assert bootstrap_cmd[bootstrap_cmd.index("--path") + 1] == "./deploy/bootstrap/store-042"
    assert bootstrap_cmd[bootstrap_cmd.index("--branch") + 1] == "main"
    assert secret_cmd[secret_cmd.index("--password") + 1] == "ghp_pat_value"
    assert source_cmd[source_cmd.index("--branch") + 1] == "release"
    assert source_cmd[source_cmd.index("--secret-ref") + 1] == "gitops"
    assert kustomization_cmd[kustomization_cmd.index("--path") + 1] == "./deploy/apps/store-042"
    assert "GitRepository/gitops" in kustomization_cmd


def test_build_az_login_command_uses_service_principal(store: config.StoreConfig) -> None:
    command = bootstrap.build_az_login_command(store)

    assert command[:3] == ["az", "login", "--service-principal"]
    assert command[command.index("--tenant") + 1] == "tenant-1234"
    assert command[command.index("--password") + 1] == "sp-secret-value"


def test_build_arc_connect_command_forwards_store_tags(store: config.StoreConfig) -> None:
    command = bootstrap.build_arc_connect_command(store)

    assert command[:3] == ["az", "connectedk8s", "connect"]
    assert command[command.index("--name") + 1] == "store-042"
    assert command[command.index("--resource-group") + 1] == "rg-stores"
    assert command[command.index("--tags") + 1 :] == ["region=emea", "format=express"]


def test_build_arc_prerequisite_commands_register_providers() -> None:
    commands = bootstrap.build_arc_prerequisite_commands()

    assert commands[0] == ["az", "extension", "add", "--name", "connectedk8s"]
    assert [command[-1] for command in commands[1:]] == [
        "Microsoft.Kubernetes",
        "Microsoft.KubernetesConfiguration",
        "Microsoft.ExtendedLocation",
    ]


def test_build_kubectl_install_commands_use_resolved_version() -> None:
    download, install = bootstrap.build_kubectl_install_commands("v1.31.0", "arm64")

    assert download == [
        "curl",
        "-fsSLO",
        "https://dl.k8s.io/release/v1.31.0/bin/linux/arm64/kubectl",
    ]
    assert install[-1] == "/usr/local/bin/kubectl"
    assert install[:2] == ["sudo", "install"]


def test_build_flux_install_command_fails_when_the_download_fails() -> None:
    shell, flag, script = bootstrap.build_flux_install_command()

    assert [shell, flag] == ["bash", "-c"]
    assert script.startswith("set -o pipefail;")
    assert "curl -fsSL https://fluxcd.io/install.sh | sudo bash" in script


@pytest.mark.skipif(
    shutil.which("bash") is None or shutil.which("curl") is None,
    reason="bash and curl are required",
)
def test_flux_install_pipeline_reports_an_unreachable_installer() -> None:
    shell, flag, script = bootstrap.build_flux_install_command()
    script = script.replace(bootstrap.FLUX_INSTALL_URL, "http://127.0.0.1:9/install.sh")
    script = script.replace("sudo bash", "cat")

    with pytest.raises(runner.CommandError):
        runner.run_commands([[shell, flag, script]])


def test_build_keyvault_secret_command_contains_credentials(store: config.StoreConfig) -> None:
    command = bootstrap.build_keyvault_secret_command(store)

    assert command[:5] == ["kubectl", "create", "secret", "generic", "secrets-store-creds"]
    assert f"clientid={store.sp_id}" in command
    assert "clientsecret=sp-secret-value" in command


def test_build_steps_respects_skip_flags(store: config.StoreConfig) -> None:
    runner = bootstrap.CommandRunner(dry_run=True)

    full = [step.name for step in bootstrap.build_steps(store, runner)]
    minimal = [
        step.name
        for step in bootstrap.build_steps(store, runner, skip_flux=True, skip_arc=True)
    ]

    assert full == [
        "Check Azure CLI",
        "Install MicroK8s",
        "Install kubectl",
        "Write kubeconfig",
        "Enable MicroK8s DNS",
        "Install Flux",
        "Bootstrap Flux GitOps",
        "Log in to Azure",
        "Register Azure Arc prerequisites",
        "Ensure resource group",
        "Connect cluster to Azure Arc",
        "Create Arc service account token",
        "Create Key Vault credentials secret",
    ]
    assert minimal == [
        "Install MicroK8s",
        "Install kubectl",
        "Write kubeconfig",
        "Enable MicroK8s DNS",
        "Create Arc service account token",
        "Create Key Vault credentials secret",
    ]


def test_script_wrapper_reports_missing_variables(
    clean_store_env: None, capsys: pytest.CaptureFixture[str]
) -> None:
    exit_code = bootstrap_script.main(["--dry-run"])

    captured = capsys.readouterr()
    assert exit_code == 1
    for name in bootstrap_script.REQUIRED_VARIABLES:
        assert f"{name} is not set." in captured.err
    assert "$ " not in captured.out


def test_script_wrapper_reads_env_file(
    clean_store_env: None,
    store_env: dict[str, str],
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    env_file = tmp_path / "store.env"
    env_file.write_text("".join(f"{key}={value}\n" for key, value in store_env.items()))
    monkeypatch.setenv("KUBECONFIG_PATH", str(tmp_path / "config"))

    recorded: dict[str, object] = {}

    def fake_run_bootstrap(store, **kwargs):
        recorded["store"] = store
        recorded.update(kwargs)

    monkeypatch.setattr(bootstrap_script, "run_bootstrap", fake_run_bootstrap)

    exit_code = bootstrap_script.main(["--env-file", str(env_file), "--skip-arc"])

    assert exit_code == 0
    assert recorded["store"].store_name == "store-042"
    assert recorded["skip_arc"] is True
    assert recorded["skip_flux"] is False
    assert recorded["dry_run"] is False
