from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from kubectl_assert_eventually.model import find_condition, get_labels


@dataclass(frozen=True)
class Condition:
    """
    Named predicate over a fetched object.

    Returning False means "not yet"; raising means the check can never pass.
    """

    description: str
    check: Callable[[dict[str, Any]], bool]

    def __call__(self, obj: dict[str, Any]) -> bool:
        return bool(self.check(obj))

    def __str__(self) -> str:
        return self.description


def exists() -> Condition:
    return Condition("existence", lambda obj: True)


def has_label(key: str) -> Condition:
    return Condition(f"label {key} present", lambda obj: key in get_labels(obj))


def label_equals(key: str, value: str = "true") -> Condition:
    description = f"label {key}" if value == "true" else f"label {key}={value}"
    return Condition(description, lambda obj: get_labels(obj).get(key) == value)


def has_condition(cond_type: str, status: str = "True", reason: str | None = None) -> Condition:
    """
    Match a status condition, e.g. has_condition("Available") or
    has_condition("Synced", reason="ReconcileSuccess").
    """

    def check(obj: dict[str, Any]) -> bool:
        c = find_condition(obj, cond_type)
        if c is None or c.get("status") != status:
            return False
        return reason is None or c.get("reason") == reason

    description = f"condition {cond_type}"
    if status != "True":
        description += f"={status}"
    if reason:
        description += f" ({reason})"
    return Condition(description, check)


def all_conditions(*conditions: Condition) -> Condition:
    description = " and ".join(c.description for c in conditions)
    return Condition(description, lambda obj: all(c(obj) for c in conditions))
