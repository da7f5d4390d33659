"""Credential lookup for remote execution."""

from __future__ import annotations

import os
import re
from typing import Protocol

from ..errors import InvalidInput

ENV_PREFIX = "BENCHFLOW_CREDENTIAL_"


class CredentialProvider(Protocol):
    """Resolves an opaque credential by name."""

    def get_credential(self, name: str) -> str: ...


class EnvironmentCredentialProvider:
    """Credentials from ``BENCHFLOW_CREDENTIAL_<NAME>`` environment variables.

    Values may also come from a ``.env`` file loaded by the CLI.
    """

    def __init__(self, environ: dict[str, str] | None = None):
        self._environ = environ

    def get_credential(self, name: str) -> str:
        env = self._environ if self._environ is not None else os.environ
        key = ENV_PREFIX + re.sub(r"[^A-Za-z0-9]", "_", name).upper()
        value = env.get(key)
        if not value:
            raise InvalidInput(f"Credential '{name}' not found (set {key})")
        return value
