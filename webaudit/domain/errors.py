from __future__ import annotations

from typing import Any, Dict


class StageError(Exception):
    """Stage-local failure. Recorded on the AuditRun; the pipeline continues."""
    retryable = False

    def details(self) -> Dict[str, Any]:
        return {"type": type(self).__name__, "retryable": self.retryable, "message": str(self)}


class TransientNetworkError(StageError):
    retryable = True


class AuthenticationError(StageError):
    pass


class ParseError(StageError):
    pass


class QuotaExceededError(StageError):
    pass


class StageTimeoutError(StageError):
    pass


class FatalError(Exception):
    """Short-circuits the whole analysis."""


class FatalPersistenceError(FatalError):
    pass


class InvalidRunTransition(RuntimeError):
    pass


class RunPersistenceError(RuntimeError):
    pass
