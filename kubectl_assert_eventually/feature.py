import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, NoReturn

from kubectl_assert_eventually.config import EnvConfig
from kubectl_assert_eventually.errors import StepFailure

logger = logging.getLogger(__name__)

Context = dict[str, Any]
StepFunc = Callable[[Context, "StepReporter", EnvConfig], Context | None]

SETUP = "setup"
ASSESS = "assess"


class State(str, Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


# ----------------------------
# Reporting handle
# ----------------------------


class StepReporter:
    """
    Handed to every step as `t`. fatal() aborts the step.
    """

    def __init__(self, feature: str, step: str):
        self.feature = feature
        self.step = step
        self.messages: list[str] = []

    def child(self, step: str) -> "StepReporter":
        sub = StepReporter(self.feature, step)
        sub.messages = self.messages
        return sub

    def log(self, *args: Any) -> None:
        message = " ".join(str(a) for a in args)
        self.messages.append(f"{self.step}: {message}")
        logger.info("[%s/%s] %s", self.feature, self.step, message)

    def logf(self, fmt: str, *args: Any) -> None:
        self.log(fmt % args if args else fmt)

    def fatal(self, *args: Any) -> NoReturn:
        message = " ".join(str(a) for a in args)
        self.messages.append(f"{self.step}: FATAL {message}")
        raise StepFailure(self.step, message)

    def fatalf(self, fmt: str, *args: Any) -> NoReturn:
        self.fatal(fmt % args if args else fmt)


# ----------------------------
# Steps and composition
# ----------------------------


@dataclass(frozen=True)
class Step:
    name: str
    fn: StepFunc

    def __call__(self, ctx: Context, t: StepReporter, cfg: EnvConfig) -> Context | None:
        return self.fn(ctx, t, cfg)


def step_name(step: Any) -> str:
    return getattr(step, "name", None) or getattr(step, "__name__", None) or repr(step)


def _run_step(step: StepFunc, name: str, ctx: Context, t: StepReporter, cfg: EnvConfig) -> Context:
    try:
        out = step(ctx, t.child(name), cfg)
    except StepFailure:
        raise
    except Exception as exc:
        raise StepFailure(name, exc) from exc
    return ctx if out is None else out


def all_of(*steps: StepFunc) -> StepFunc:
    """
    Run `steps` strictly in order, stopping at the first failure.
    The raised StepFailure names the sub-step that failed.
    """

    def run(ctx: Context, t: StepReporter, cfg: EnvConfig) -> Context:
        for step in steps:
            ctx = _run_step(step, step_name(step), ctx, t, cfg)
        return ctx

    run.__name__ = "all_of(" + ", ".join(step_name(s) for s in steps) + ")"
    return run


def as_step(fn: Callable[[Context, EnvConfig], Context | None]) -> StepFunc:
    """
    Adapt an environment function (ctx, cfg) -> ctx into a step.
    """

    def run(ctx: Context, t: StepReporter, cfg: EnvConfig) -> Context | None:
        return fn(ctx, cfg)

    run.__name__ = step_name(fn)
    return run


# ----------------------------
# Features
# ----------------------------


@dataclass
class Feature:
    name: str
    labels: dict[str, str] = field(default_factory=dict)
    setup: list[Step] = field(default_factory=list)
    assessments: list[Step] = field(default_factory=list)

    def phases(self) -> list[tuple[str, Step]]:
        return [(SETUP, s) for s in self.setup] + [(ASSESS, s) for s in self.assessments]

    def matches(self, selector: dict[str, str]) -> bool:
        return all(self.labels.get(k) == v for k, v in selector.items())


class FeatureBuilder:
    def __init__(self, name: str):
        self._feature = Feature(name=name)

    def with_label(self, key: str, value: str) -> "FeatureBuilder":
        self._feature.labels[key] = value
        return self

    def with_setup(self, name: str, fn: StepFunc) -> "FeatureBuilder":
        self._feature.setup.append(Step(name, fn))
        return self

    def assess(self, name: str, fn: StepFunc) -> "FeatureBuilder":
        self._feature.assessments.append(Step(name, fn))
        return self

    def feature(self) -> Feature:
        return self._feature


@dataclass
class PhaseResult:
    name: str
    kind: str
    state: State = State.PENDING
    duration: float = 0.0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "state": self.state.value,
            "duration": round(self.duration, 3),
            "error": self.error,
        }


@dataclass
class FeatureResult:
    name: str
    state: State = State.PENDING
    phases: list[PhaseResult] = field(default_factory=list)
    failure: StepFailure | None = None
    failed_phase: str | None = None
    ctx: Context = field(default_factory=dict)
    messages: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state is State.SUCCEEDED

    @property
    def failed_step(self) -> str | None:
        return self.failure.step if self.failure else None

    def raise_for_failure(self) -> None:
        if self.failure is not None:
            raise self.failure

    def to_dict(self) -> dict[str, Any]:
        return {
            "feature": self.name,
            "state": self.state.value,
            "failed_phase": self.failed_phase,
            "failed_step": self.failed_step,
            "cause": str(self.failure.cause) if self.failure else None,
            "phases": [p.to_dict() for p in self.phases],
        }


class FeatureRunner:
    """
    Runs features one at a time: setup phases, then assessments, in
    registration order. The first failing phase fails the feature and no
    further phase runs. Nothing is torn down here.
    """

    def __init__(self, cfg: EnvConfig):
        self.cfg = cfg

    def cancel(self) -> None:
        """
        Abort the current run; an in-flight poll returns promptly.

        Cancellation is sticky: `cfg.cancel` stays set, so any later run on
        this config fails at its first poll with PollCancelled. Run again
        with a config carrying a fresh event, e.g.
        `dataclasses.replace(cfg, cancel=threading.Event())`.
        """
        self.cfg.cancel.set()

    def run(self, feature: Feature, ctx: Context | None = None) -> FeatureResult:
        result = FeatureResult(name=feature.name, ctx=dict(ctx or {}))
        result.state = State.RUNNING
        logger.info("Feature %s: running", feature.name)

        for kind, step in feature.phases():
            phase = PhaseResult(name=step.name, kind=kind, state=State.RUNNING)
            result.phases.append(phase)

            t = StepReporter(feature.name, step.name)
            t.messages = result.messages
            started = time.monotonic()
            try:
                result.ctx = _run_step(step, step.name, result.ctx, t, self.cfg)
            except StepFailure as exc:
                phase.duration = time.monotonic() - started
                phase.state = State.FAILED
                phase.error = str(exc)
                result.state = State.FAILED
                result.failure = exc
                result.failed_phase = step.name
                logger.error("Feature %s: %s phase %s failed: %s", feature.name, kind, step.name, exc)
                return result

            phase.duration = time.monotonic() - started
            phase.state = State.SUCCEEDED
            logger.info("Feature %s: %s phase %s passed", feature.name, kind, step.name)

        result.state = State.SUCCEEDED
        logger.info("Feature %s: succeeded", feature.name)
        return result

    def run_all(self, features: Iterable[Feature], ctx: Context | None = None) -> list[FeatureResult]:
        results = []
        for feature in features:
            if not feature.matches(dict(self.cfg.labels)):
                logger.info("Feature %s: skipped by label filter %s", feature.name, dict(self.cfg.labels))
                continue
            results.append(self.run(feature, ctx))
        return results
