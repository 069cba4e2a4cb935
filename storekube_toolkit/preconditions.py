"""Check that required configuration values are present before provisioning.

The validator is a pure fold over the requirement list: it resolves each
name's *value* through a lookup, collects every name whose value is absent or
the empty string, and returns the collected names. Callers decide what a
failure means; nothing here prints or exits.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from dotenv import dotenv_values

Lookup = Union[Callable[[str], Optional[str]], Mapping[str, Optional[str]]]


class ConfigurationError(RuntimeError):
    """Raised when configuration cannot be read or is unusable."""


class MalformedRequirementsError(ConfigurationError):
    """Raised when the requirement list or lookup itself is invalid."""


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of a validation pass; ``missing`` keeps declaration order."""

    missing: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.missing

    def __bool__(self) -> bool:
        return self.ok

    def describe(self) -> list[str]:
        return [f"{name} is not set. Please set it up." for name in self.missing]


def as_lookup(lookup: Lookup) -> Callable[[str], str | None]:
    if isinstance(lookup, Mapping):
        return lookup.get
    if callable(lookup):
        return lookup
    raise MalformedRequirementsError(
        f"lookup must be a mapping or a callable, not {type(lookup).__name__}"
    )


def _normalize_names(names: Iterable[str] | None) -> list[str]:
    if names is None:
        raise MalformedRequirementsError("requirement list must be provided")
    if isinstance(names, (str, bytes)):
        raise MalformedRequirementsError(
            "requirement list must be a sequence of names, not a single string"
        )
    try:
        normalized = list(names)
    except TypeError as exc:
        raise MalformedRequirementsError(
            f"requirement list must be iterable, not {type(names).__name__}"
        ) from exc
    for name in normalized:
        if not isinstance(name, str):
            raise MalformedRequirementsError(
                f"requirement names must be strings, got {name!r}"
            )
    return normalized


def validate_required(names: Iterable[str] | None, lookup: Lookup) -> ValidationResult:
    """Return every name in ``names`` whose value is missing or empty.

    Whitespace-only values count as set. Duplicated names are checked (and
    reported) once per occurrence.
    """

    required = _normalize_names(names)
    resolve = as_lookup(lookup)
    missing: list[str] = []
    for name in required:
        value = resolve(name)
        if value is None or value == "":
            missing.append(name)
    return ValidationResult(tuple(missing))


def environment_lookup(
    env_file: os.PathLike[str] | str | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> dict[str, str | None]:
    """Build the configuration environment.

    Values from ``env_file`` (dotenv syntax) act as defaults; the process
    environment wins unless its value is empty and the file sets the name.
    """

    values: dict[str, str | None] = {}
    if env_file is not None:
        path = Path(env_file).expanduser()
        if not path.is_file():
            raise ConfigurationError(f"Environment file not found: {path}")
        values.update(dotenv_values(path))
    process = os.environ if environ is None else environ
    for name, value in process.items():
        if value == "" and values.get(name):
            continue
        values[name] = value
    return values


__all__ = [
    "ConfigurationError",
    "Lookup",
    "MalformedRequirementsError",
    "ValidationResult",
    "as_lookup",
    "environment_lookup",
    "validate_required",
]
