from typing import Any


class AssertionEngineError(Exception):
    """
    Base class for every failure raised by the assertion engine.
    """


class ConfigError(AssertionEngineError):
    pass


# ----------------------------
# Object access
# ----------------------------


class InvalidReference(AssertionEngineError):
    """
    Object coordinates are malformed (bad apiVersion, empty name, ...).
    Never retried.
    """

    def __init__(self, message: str, ref: Any = None):
        super().__init__(message)
        self.ref = ref


class StoreError(AssertionEngineError):
    """
    The remote store could not serve a read (connectivity, permission, ...).
    """

    def __init__(self, message: str, ref: Any = None):
        super().__init__(message)
        self.ref = ref


class NotFound(StoreError):
    pass


# ----------------------------
# Field extraction
# ----------------------------


class FieldError(AssertionEngineError):
    """
    Object exists but its shape is not what the caller expected.
    Structural problems are never retried.
    """

    def __init__(self, message: str, path: tuple[str, ...] = ()):
        super().__init__(message)
        self.path = path


class FieldNotFound(FieldError):
    pass


class TypeMismatch(FieldError):
    pass


# ----------------------------
# Polling
# ----------------------------


class PollTimeout(AssertionEngineError):
    def __init__(self, message: str, attempts: int = 0, timeout: float = 0.0):
        super().__init__(message)
        self.attempts = attempts
        self.timeout = timeout


class PollCancelled(PollTimeout):
    pass


class ConditionNotMet(PollTimeout):
    """
    A terminal check never held for one specific resource.
    """

    def __init__(
        self,
        condition: str,
        ref: Any,
        attempts: int = 0,
        timeout: float = 0.0,
    ):
        super().__init__(
            f"{condition} not true on resource {ref}",
            attempts=attempts,
            timeout=timeout,
        )
        self.condition = condition
        self.ref = ref


class ChainFailure(AssertionEngineError):
    """
    Aggregate raised when a chain is diagnosed without failing fast.
    """

    def __init__(self, failures: list[AssertionEngineError], result: Any = None):
        lines = "; ".join(str(f) for f in failures)
        super().__init__(f"{len(failures)} resource(s) failed: {lines}")
        self.failures = failures
        self.result = result


# ----------------------------
# Composition
# ----------------------------


class StepFailure(AssertionEngineError):
    def __init__(self, step: str, cause: BaseException | str):
        super().__init__(f"step {step!r} failed: {cause}")
        self.step = step
        self.cause = cause
