import os
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

import yaml

from kubectl_assert_eventually.accessor import KubernetesStore, ObjectAccessor
from kubectl_assert_eventually.errors import ConfigError
from kubectl_assert_eventually.poll import DEFAULT_INTERVAL, DEFAULT_TIMEOUT, PollSettings
from kubectl_assert_eventually.resolver import (
    DEADLINE_PER_CHILD,
    DEADLINE_POLICIES,
    ReferenceChaser,
)


@dataclass(frozen=True)
class EnvConfig:
    """
    Ambient settings every step receives explicitly.
    """

    namespace: str = "default"
    poll_timeout: float = DEFAULT_TIMEOUT
    poll_interval: float = DEFAULT_INTERVAL
    deadline: str = DEADLINE_PER_CHILD
    labels: Mapping[str, str] = field(default_factory=dict)
    kubeconfig: str | None = None
    kube_context: str | None = None

    accessor: ObjectAccessor | None = field(default=None, compare=False)
    cancel: threading.Event = field(default_factory=threading.Event, compare=False)
    clock: Callable[[], float] = field(default=time.monotonic, compare=False)
    sleep: Callable[[float], Any] | None = field(default=None, compare=False)

    def client(self) -> ObjectAccessor:
        if self.accessor is None:
            raise ConfigError("no object accessor configured, call connect() first")
        return self.accessor

    def connect(self) -> "EnvConfig":
        """
        Return a copy wired to the cluster named by kubeconfig/context.
        """
        if self.accessor is not None:
            return self
        store = KubernetesStore.from_kubeconfig(self.kubeconfig, self.kube_context)
        return replace(self, accessor=ObjectAccessor(store))

    def with_accessor(self, accessor: ObjectAccessor) -> "EnvConfig":
        return replace(self, accessor=accessor)

    def poll_settings(self, timeout: float | None = None) -> PollSettings:
        return PollSettings(
            timeout=self.poll_timeout if timeout is None else timeout,
            interval=self.poll_interval,
            cancel=self.cancel,
            clock=self.clock,
            sleep=self.sleep,
        )

    def chaser(self, timeout: float | None = None, **kwargs: Any) -> ReferenceChaser:
        kwargs.setdefault("deadline", self.deadline)
        return ReferenceChaser(self.client(), self.poll_settings(timeout), **kwargs)


# ----------------------------
# Loading
# ----------------------------


def positive_float(name: str, value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number, got {value!r}") from exc
    if number <= 0:
        raise ConfigError(f"{name} must be positive, got {value!r}")
    return number


def parse_labels(text: str) -> dict[str, str]:
    """
    "area=xfn,size=small" -> {"area": "xfn", "size": "small"}
    """
    labels: dict[str, str] = {}
    for item in text.split(","):
        item = item.strip()
        if not item:
            continue
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ConfigError(f"label filter must look like key=value, got {item!r}")
        labels[key.strip()] = value.strip()
    return labels


def load_config(
    path: str | None = None,
    env: Mapping[str, str] | None = None,
    accessor: ObjectAccessor | None = None,
) -> EnvConfig:
    """
    Build an EnvConfig from defaults, an optional YAML file and then
    E2E_* environment variables (highest precedence).
    """
    env = os.environ if env is None else env
    values: dict[str, Any] = {}

    if path:
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"cannot read config {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"config {path} must be a mapping")

        poll_section = data.get("poll", {}) or {}
        for key, target in (
            ("namespace", "namespace"),
            ("deadline", "deadline"),
            ("kubeconfig", "kubeconfig"),
            ("context", "kube_context"),
        ):
            if key in data:
                values[target] = data[key]
        if "timeout" in poll_section:
            values["poll_timeout"] = poll_section["timeout"]
        if "interval" in poll_section:
            values["poll_interval"] = poll_section["interval"]
        if "labels" in data:
            if not isinstance(data["labels"], dict):
                raise ConfigError("labels must be a mapping")
            values["labels"] = {str(k): str(v) for k, v in data["labels"].items()}

    for var, target in (
        ("E2E_NAMESPACE", "namespace"),
        ("E2E_POLL_TIMEOUT", "poll_timeout"),
        ("E2E_POLL_INTERVAL", "poll_interval"),
        ("E2E_DEADLINE_POLICY", "deadline"),
        ("E2E_KUBECONFIG", "kubeconfig"),
        ("E2E_KUBE_CONTEXT", "kube_context"),
    ):
        if env.get(var):
            values[target] = env[var]
    if env.get("E2E_LABELS"):
        values["labels"] = parse_labels(env["E2E_LABELS"])

    if "poll_timeout" in values:
        values["poll_timeout"] = positive_float("poll timeout", values["poll_timeout"])
    if "poll_interval" in values:
        values["poll_interval"] = positive_float("poll interval", values["poll_interval"])
    if values.get("deadline", DEADLINE_PER_CHILD) not in DEADLINE_POLICIES:
        raise ConfigError(
            f"deadline policy must be one of {DEADLINE_POLICIES}, "
            f"got {values['deadline']!r}"
        )
    if "namespace" in values and not values["namespace"]:
        raise ConfigError("namespace must not be empty")

    return EnvConfig(accessor=accessor, **values)
