"""Exception hierarchy for the benchmark pipeline framework."""

from __future__ import annotations


class BenchflowError(Exception):
    """Base class for all framework errors."""


class LockTimeout(BenchflowError):
    """The state mutation lock could not be obtained in time.

    State is untouched when this is raised; the caller may retry.
    """

    def __init__(self, lock_path: str, timeout: float):
        self.lock_path = lock_path
        self.timeout = timeout
        super().__init__(
            f"Could not acquire state lock {lock_path} within {timeout:.1f}s"
        )


class RunNotFound(BenchflowError):
    """No run state exists for the requested run id."""

    def __init__(self, run_id: str | None):
        self.run_id = run_id
        if run_id:
            super().__init__(f"Run not found: {run_id}")
        else:
            super().__init__("No current run state found")


class PhaseNotFound(BenchflowError):
    """The phase name is not part of the run."""

    def __init__(self, run_id: str, phase: str):
        self.run_id = run_id
        self.phase = phase
        super().__init__(f"Phase '{phase}' is not part of run {run_id}")


class CollectionNotFound(BenchflowError):
    """The collection id is not registered with the supervisor."""

    def __init__(self, collection_id: str):
        self.collection_id = collection_id
        super().__init__(f"Collection not found: {collection_id}")


class InvalidInput(BenchflowError):
    """A caller supplied an invalid argument (e.g. an empty phase list)."""


class IllegalTransition(BenchflowError):
    """A phase status change would regress or rewrite a settled phase."""

    def __init__(self, phase: str, current: str, requested: str):
        self.phase = phase
        self.current = current
        self.requested = requested
        super().__init__(
            f"Illegal transition for phase '{phase}': {current} -> {requested}"
        )


class StateCorrupted(BenchflowError):
    """Persisted state could not be decoded or failed schema validation."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Corrupted state file {path}: {reason}")


class RemoteTargetUnreachable(BenchflowError):
    """A remote target did not answer (SSH failure, connection timeout)."""

    def __init__(self, target: str, reason: str = ""):
        self.target = target
        self.reason = reason
        message = f"Remote target unreachable: {target}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class RemoteCommandError(BenchflowError):
    """A remote procedure ran on the target but returned a failure."""

    def __init__(self, target: str, procedure: str, returncode: int, stderr: str = ""):
        self.target = target
        self.procedure = procedure
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no stderr"
        super().__init__(
            f"Procedure '{procedure}' failed on {target} "
            f"(exit {returncode}): {detail}"
        )


class PhaseExecutionFailure(BenchflowError):
    """A phase body failed; the pipeline halts and the phase is marked failed."""

    def __init__(self, phase: str, cause: BaseException | str):
        self.phase = phase
        self.cause = cause
        super().__init__(f"Phase '{phase}' failed: {cause}")
