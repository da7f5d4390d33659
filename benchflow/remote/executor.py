"""Remote procedure execution on pipeline targets."""

from __future__ import annotations

import os
import shlex
from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol

from ..debug import debug_log_command, debug_log_result
from ..errors import RemoteCommandError, RemoteTargetUnreachable
from ..util import safe_command

if TYPE_CHECKING:
    from ..config import BenchflowConfig, RemoteConfig, TargetConfig
    from .credentials import CredentialProvider

# ssh exits with 255 when it could not reach or authenticate to the host
SSH_CONNECTION_FAILURE = 255


class RemoteExecutor(Protocol):
    """Capability for running procedures on named targets."""

    def invoke(
        self,
        target: str,
        procedure: str,
        args: Sequence[str] | None = None,
        timeout: float | None = None,
    ) -> str: ...

    def check_connectivity(self, target: str) -> bool: ...


class SshRemoteExecutor:
    """Run procedures over SSH (or directly, for local targets).

    ``invoke`` returns the procedure's stdout. It raises
    ``RemoteTargetUnreachable`` when the target cannot be reached and
    ``RemoteCommandError`` when the procedure itself fails.
    """

    def __init__(
        self,
        targets: Sequence[TargetConfig],
        remote: RemoteConfig,
        credentials: CredentialProvider | None = None,
    ):
        self.targets = {t.name: t for t in targets}
        self.remote = remote
        self.credentials = credentials

    @classmethod
    def from_config(
        cls, config: BenchflowConfig, credentials: CredentialProvider | None = None
    ) -> SshRemoteExecutor:
        return cls(config.targets, config.remote, credentials)

    def invoke(
        self,
        target: str,
        procedure: str,
        args: Sequence[str] | None = None,
        timeout: float | None = None,
    ) -> str:
        command = procedure
        if args:
            command += " " + " ".join(shlex.quote(str(a)) for a in args)
        timeout = timeout or self.remote.command_timeout_s

        full_command = self._wrap(target, command)
        debug_log_command(target, full_command, timeout)
        result = safe_command(full_command, timeout=timeout)
        debug_log_result(target, result["success"], result["stdout"], result["stderr"])

        if result["success"]:
            return str(result["stdout"])

        if result["timed_out"]:
            raise RemoteTargetUnreachable(target, result["stderr"])
        if not self._is_local(target) and result["returncode"] == SSH_CONNECTION_FAILURE:
            raise RemoteTargetUnreachable(target, str(result["stderr"]).strip())
        if result["returncode"] == -1:
            raise RemoteTargetUnreachable(target, result["stderr"])
        raise RemoteCommandError(
            target, procedure, int(result["returncode"]), str(result["stderr"])
        )

    def check_connectivity(self, target: str) -> bool:
        """Return True if a trivial command succeeds on the target."""
        try:
            self.invoke(target, "echo ready", timeout=self.remote.connect_timeout_s + 5)
            return True
        except (RemoteTargetUnreachable, RemoteCommandError):
            return False

    def _is_local(self, target: str) -> bool:
        return self._target(target).is_local

    def _target(self, name: str) -> TargetConfig:
        try:
            return self.targets[name]
        except KeyError:
            raise RemoteTargetUnreachable(name, "unknown target") from None

    def _wrap(self, target: str, command: str) -> str:
        cfg = self._target(target)
        if cfg.is_local:
            return command
        user = cfg.ssh_user or self.remote.ssh_user
        return f"{self._ssh_prefix(cfg)} {user}@{cfg.host} {shlex.quote(command)}"

    def _ssh_prefix(self, cfg: TargetConfig) -> str:
        """Get SSH command prefix with key and port if configured."""
        ssh_opts = (
            "-o StrictHostKeyChecking=no -o BatchMode=yes "
            f"-o ConnectTimeout={self.remote.connect_timeout_s}"
        )

        key_path = cfg.ssh_private_key_path or self._credential_key_path()
        if key_path:
            ssh_opts += f" -i {shlex.quote(os.path.expanduser(key_path))}"

        port = cfg.ssh_port or self.remote.ssh_port
        if port != 22:
            ssh_opts += f" -p {port}"

        return f"ssh {ssh_opts}"

    def _credential_key_path(self) -> str | None:
        if self.remote.credential and self.credentials is not None:
            return self.credentials.get_credential(self.remote.credential)
        return self.remote.ssh_private_key_path  # no provider: use the configured key
