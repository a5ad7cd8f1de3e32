"""Error taxonomy for the encode-to-budget pipeline.

Every job-level failure is an instance of :class:`VBudgetError` carrying a
``kind`` string that ends up in ``JobError.kind``. Soft conditions
(``SizeBudgetExceeded``, ``CleanupError``) are logged, never raised out of a job.
"""

import re
from typing import Optional

MEMORY_FAULT_PATTERN = re.compile(
    r"memory access out of bounds|cannot allocate memory|out of memory|bad_alloc",
    re.IGNORECASE,
)


class VBudgetError(Exception):
    kind = "error"


class InputError(VBudgetError):
    """Unreadable, corrupt or zero-duration source. Never retried."""

    kind = "input_error"


class OperationTimeout(VBudgetError, TimeoutError):
    """A bounded operation exceeded its deadline."""

    kind = "timeout"

    def __init__(self, operation: str, timeout_s: float):
        self.operation = operation
        self.timeout_s = timeout_s
        super().__init__(f"{operation} timed out after {timeout_s:.0f}s")


class EngineError(VBudgetError):
    """The engine reported a failure (non-zero exit, missing output)."""

    kind = "engine_error"

    def __init__(self, message: str, returncode: Optional[int] = None):
        self.returncode = returncode
        super().__init__(message)


class EngineMemoryFault(EngineError):
    kind = "engine_memory_fault"


class EngineLoadError(VBudgetError):
    kind = "engine_load_error"


class SizeBudgetExceeded(VBudgetError):
    kind = "size_budget_exceeded"


class CleanupError(VBudgetError):
    kind = "cleanup_error"


class FrameDecodeError(VBudgetError):
    kind = "frame_decode_error"


class FaceDetectorError(VBudgetError):
    kind = "face_detector_error"


def is_memory_fault(error: BaseException) -> bool:
    """True when the error description looks like engine memory corruption."""
    if isinstance(error, EngineMemoryFault):
        return True
    return bool(MEMORY_FAULT_PATTERN.search(str(error)))


def error_kind(error: BaseException) -> str:
    if isinstance(error, VBudgetError):
        return error.kind
    if isinstance(error, TimeoutError):
        return OperationTimeout.kind
    if is_memory_fault(error):
        return EngineMemoryFault.kind
    return "internal_error"
