"""Test fixtures and configuration helpers."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import SimpleNamespace

import pytest

ROOT = Path(__file__).resolve().parents[1]

# Ensure the project root is importable so ``sitecustomize`` is discovered by
# subprocesses spawned in tests.  ``sys.path`` adjustments affect the current
# interpreter while the ``PYTHONPATH`` export keeps child interpreters aligned.
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

STORE_ENV: dict[str, str] = {
    "STORE_NAME": "store-042",
    "STORE_TAGS": "region=emea,format=express",
    "AZ_SP_ID": "00000000-1111-2222-3333-444444444444",
    "AZ_SP_SECRET": "sp-secret-value",
    "AZ_TENANT_ID": "tenant-1234",
    "GITOPS_REPO": "contoso/store-gitops",
    "GITOPS_PAT": "ghp_pat_value",
    "GITOPS_BRANCH": "release",
    "AZ_ARC_RESOURCEGROUP": "rg-stores",
    "AZ_ARC_RESOURCEGROUP_LOCATION": "westeurope",
}


def _export_pythonpath(monkeypatch: pytest.MonkeyPatch) -> None:
    path_str = str(ROOT)
    pythonpath = os.environ.get("PYTHONPATH")
    if not pythonpath:
        monkeypatch.setenv("PYTHONPATH", path_str)
        return
    parts = pythonpath.split(os.pathsep)
    if path_str in parts:
        return
    parts.insert(0, path_str)
    monkeypatch.setenv("PYTHONPATH", os.pathsep.join(parts))


@pytest.fixture(autouse=True)
def enable_subprocess_coverage(monkeypatch: pytest.MonkeyPatch) -> None:
    """Propagate coverage configuration to subprocesses under test."""

    monkeypatch.setenv("COVERAGE_PROCESS_START", str(ROOT / ".coveragerc"))
    _export_pythonpath(monkeypatch)


@pytest.fixture
def store_env() -> dict[str, str]:
    """A complete set of provisioning variables."""

    return dict(STORE_ENV)


@pytest.fixture
def clean_store_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove provisioning variables inherited from the developer shell."""

    for name in (*STORE_ENV, "KUBECONFIG_PATH", "GITOPS_HOST", "FLUX_INTERVAL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def exported_store_env(
    monkeypatch: pytest.MonkeyPatch, clean_store_env: None, tmp_path: Path
) -> dict[str, str]:
    """Export the provisioning variables with a kubeconfig under ``tmp_path``."""

    for name, value in STORE_ENV.items():
        monkeypatch.setenv(name, value)
    monkeypatch.setenv("KUBECONFIG_PATH", str(tmp_path / "kube" / "config"))
    return dict(STORE_ENV)


@dataclass
class RecordedRun:
    """Capture ``subprocess.run`` calls and answer them from a script."""

    calls: list[list[str]] = field(default_factory=list)
    responses: dict[tuple[str, ...], tuple[int, str]] = field(default_factory=dict)

    def respond(self, prefix: list[str], *, returncode: int = 0, stdout: str = "") -> None:
        self.responses[tuple(prefix)] = (returncode, stdout)

    def __call__(self, command, **_kwargs):
        command = list(command)
        self.calls.append(command)
        for length in range(len(command), 0, -1):
            answer = self.responses.get(tuple(command[:length]))
            if answer is not None:
                returncode, stdout = answer
                return SimpleNamespace(returncode=returncode, stdout=stdout, stderr="")
        return SimpleNamespace(returncode=0, stdout="", stderr="")


@pytest.fixture
def recorded_run(monkeypatch: pytest.MonkeyPatch) -> RecordedRun:
    """Replace ``subprocess.run`` in the runner with a recorder."""

    from storekube_toolkit import runner

    recorder = RecordedRun()
    monkeypatch.setattr(runner.subprocess, "run", recorder)
    return recorder

