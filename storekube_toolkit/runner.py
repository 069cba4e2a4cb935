"""Utility helpers for running subprocesses consistently."""

from __future__ import annotations

import os
import shlex
import shutil
import subprocess
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

REDACTED = "***"


@dataclass(slots=True)
class CommandError(RuntimeError):
    """Raised when a subprocess exits with a non-zero status."""

    command: Sequence[str]
    returncode: int
    stderr: str | None = None
    secrets: Sequence[str] = field(default_factory=tuple)

    def __str__(self) -> str:
        printable = format_command(self.command, secrets=self.secrets)
        message = f"{printable} exited with status {self.returncode}"
        if self.stderr:
            stderr = redact(self.stderr.strip(), self.secrets)
            if stderr:
                message = f"{message}\n{stderr}"
        return message


def redact(text: str, secrets: Iterable[str] = ()) -> str:
    """Replace every non-empty secret in ``text`` with a placeholder."""

    # Longest first so a secret containing another secret is fully masked.
    for secret in sorted((s for s in secrets if s), key=len, reverse=True):
        text = text.replace(secret, REDACTED)
    return text


def format_command(command: Sequence[str], *, secrets: Iterable[str] = ()) -> str:
    """Render a subprocess command for display or logging."""

    return redact(" ".join(shlex.quote(part) for part in command), secrets)


def which(tool: str) -> str | None:
    return shutil.which(tool)


def _merge_env(env: Mapping[str, str] | None) -> Mapping[str, str] | None:
    if env is None:
        return None
    merged = os.environ.copy()
    merged.update(env)
    return merged


def _announce(command: Sequence[str], secrets: Sequence[str]) -> None:
    print(f"$ {format_command(command, secrets=secrets)}", flush=True)


def run_commands(
    commands: Iterable[Sequence[str]],
    *,
    dry_run: bool = False,
    env: Mapping[str, str] | None = None,
    cwd: os.PathLike[str] | str | None = None,
    secrets: Sequence[str] = (),
) -> None:
    """Run each command, stopping at the first failure.

    When ``dry_run`` is ``True`` the commands are only printed. Any value in
    ``secrets`` is masked in the printed commands and in raised errors.
    """

    process_env = _merge_env(env)

    for command in commands:
        _announce(command, secrets)
        if dry_run:
            continue
        result = subprocess.run(
            list(command),
            env=process_env,
            check=False,
            text=True,
            stderr=subprocess.PIPE,
            cwd=str(cwd) if cwd is not None else None,
        )
        if result.returncode != 0:
            raise CommandError(
                list(command), result.returncode, stderr=result.stderr, secrets=tuple(secrets)
            )


def capture(
    command: Sequence[str],
    *,
    dry_run: bool = False,
    env: Mapping[str, str] | None = None,
    secrets: Sequence[str] = (),
) -> str:
    """Run ``command`` and return its stripped standard output.

    Dry runs print the command and return an empty string.
    """

    _announce(command, secrets)
    if dry_run:
        return ""
    result = subprocess.run(
        list(command),
        env=_merge_env(env),
        check=False,
        text=True,
        capture_output=True,
    )
    if result.returncode != 0:
        raise CommandError(
            list(command), result.returncode, stderr=result.stderr, secrets=tuple(secrets)
        )
    return (result.stdout or "").strip()


def succeeds(
    command: Sequence[str],
    *,
    dry_run: bool = False,
    env: Mapping[str, str] | None = None,
) -> bool:
    """Return whether ``command`` exits zero. Dry runs never run it."""

    _announce(command, ())
    if dry_run:
        return False
    result = subprocess.run(
        list(command),
        env=_merge_env(env),
        check=False,
        text=True,
        capture_output=True,
    )
    return result.returncode == 0
