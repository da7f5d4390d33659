"""Remote execution and credential capabilities."""

from .credentials import CredentialProvider, EnvironmentCredentialProvider
from .executor import RemoteExecutor, SshRemoteExecutor

__all__ = [
    "CredentialProvider",
    "EnvironmentCredentialProvider",
    "RemoteExecutor",
    "SshRemoteExecutor",
]
