"""
Errors — typed failure taxonomy with stable, machine-readable codes.

Every fatal condition in the orchestrator is one of these.  None of them
is retried: the run halts and the originating target plus the captured
diagnostics are reported to the invoker.
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, Mapping, Optional


class ErrorCode(str, Enum):
    """Stable error identifiers recorded in receipts."""
    COMPILE = "E_COMPILE"
    ARTIFACT_NOT_FOUND = "E_ARTIFACT_NOT_FOUND"
    RELOCATION = "E_RELOCATION"
    TEST = "E_TEST"
    CONFIGURATION = "E_CONFIGURATION"
    DEPENDENCY_FAILED = "E_DEPENDENCY_FAILED"
    INTERRUPTED = "E_INTERRUPTED"
    COMMAND = "E_COMMAND"
    REPORT = "E_REPORT"


class BridgeError(Exception):
    """Base error carrying a code, an optional hint and string context."""

    code: ErrorCode
    hint: Optional[str]
    context: Dict[str, str]

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        hint: Optional[str] = None,
        context: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.hint = hint
        self.context = dict(context or {})

    @property
    def message(self) -> str:
        return self.args[0] if self.args else ""

    def __str__(self) -> str:
        parts = [self.message]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        for k, v in self.context.items():
            if v:
                parts.append(f"  {k}: {v}")
        return "\n".join(parts)

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "code": self.code.value,
            "message": self.message,
            "context": dict(self.context),
        }
        if self.hint is not None:
            payload["hint"] = self.hint
        return payload


class CompileFailed(BridgeError):
    """The compiler process exited non-zero (or timed out)."""

    def __init__(
        self,
        message: str,
        *,
        diagnostics: str = "",
        hint: Optional[str] = None,
        context: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.COMPILE, hint=hint, context=context)
        self.diagnostics = diagnostics


class ArtifactNotFound(BridgeError):
    """A reported-successful compile left no expected output behind."""

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        context: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(
            message, code=ErrorCode.ARTIFACT_NOT_FOUND, hint=hint, context=context,
        )


class RelocationFailed(BridgeError):
    """Copying, renaming or stripping an artifact failed on the filesystem."""

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        context: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.RELOCATION, hint=hint, context=context)


class TestFailed(BridgeError):
    """A verification stage reported failures."""

    __test__ = False  # keep pytest from collecting this class

    def __init__(
        self,
        message: str,
        *,
        stage: str,
        diagnostics: str = "",
        hint: Optional[str] = None,
        context: Optional[Mapping[str, str]] = None,
    ) -> None:
        ctx = {"stage": stage}
        ctx.update(context or {})
        super().__init__(message, code=ErrorCode.TEST, hint=hint, context=ctx)
        self.stage = stage
        self.diagnostics = diagnostics


class CommandFailed(BridgeError):
    """An auxiliary command (clean, doc) exited non-zero."""

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        context: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.COMMAND, hint=hint, context=context)


class ReportFailed(BridgeError):
    """The receipt or a captured log could not be written."""

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        context: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.REPORT, hint=hint, context=context)


class BuildInterrupted(BridgeError):
    """The run was interrupted; running children were terminated."""

    def __init__(
        self,
        message: str = "Build interrupted.",
        *,
        context: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(message, code=ErrorCode.INTERRUPTED, context=context)


class ConfigurationError(BridgeError):
    """The target graph or the settings are unusable."""

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        context: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(
            message, code=ErrorCode.CONFIGURATION, hint=hint, context=context,
        )


__all__ = [
    "ArtifactNotFound",
    "BridgeError",
    "BuildInterrupted",
    "CommandFailed",
    "CompileFailed",
    "ConfigurationError",
    "ErrorCode",
    "RelocationFailed",
    "ReportFailed",
    "TestFailed",
]
