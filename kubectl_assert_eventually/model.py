import json
from dataclasses import dataclass
from typing import Any

import yaml

from kubectl_assert_eventually.errors import InvalidReference

# ----------------------------
# Object coordinates
# ----------------------------


@dataclass(frozen=True)
class ObjectRef:
    """
    Coordinates of any fetchable object.
    """

    name: str
    namespace: str
    api_version: str
    kind: str

    def group_version(self) -> tuple[str, str]:
        return parse_group_version(self.api_version)

    def validate(self) -> None:
        for field_name in ("name", "namespace", "api_version", "kind"):
            value = getattr(self, field_name)
            if not isinstance(value, str) or not value:
                raise InvalidReference(
                    f"{field_name} must be a non-empty string, got {value!r}",
                    ref=self,
                )
        self.group_version()

    def __str__(self) -> str:
        return f"{self.kind}.{self.api_version} {self.namespace}/{self.name}"


def parse_group_version(api_version: str) -> tuple[str, str]:
    """
    Split an apiVersion into (group, version).
    "v1" is the core group, returned as ("", "v1").
    """
    if not isinstance(api_version, str) or not api_version:
        raise InvalidReference(f"empty apiVersion: {api_version!r}")

    parts = api_version.split("/")
    if len(parts) == 1:
        return "", parts[0]
    if len(parts) == 2 and parts[0] and parts[1]:
        return parts[0], parts[1]

    raise InvalidReference(f"unexpected apiVersion string: {api_version!r}")


def ref_of(obj: dict[str, Any], namespace: str | None = None) -> ObjectRef:
    """
    Build the ObjectRef of a manifest or fetched object.
    """
    meta = obj.get("metadata", {}) or {}
    return ObjectRef(
        name=meta.get("name", ""),
        namespace=meta.get("namespace") or namespace or "",
        api_version=obj.get("apiVersion", ""),
        kind=obj.get("kind", ""),
    )


# ----------------------------
# Parsing utilities
# ----------------------------


def load_json(path: str) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def load_yaml_documents(path: str) -> list[dict[str, Any]]:
    with open(path, encoding="utf-8") as f:
        return [doc for doc in yaml.safe_load_all(f) if doc]


def normalize_items(objects: Any) -> list[dict[str, Any]]:
    if isinstance(objects, list):
        return objects
    if objects.get("kind", "").endswith("List"):
        return objects.get("items", [])
    return [objects]


def get_labels(obj: dict[str, Any]) -> dict[str, str]:
    return obj.get("metadata", {}).get("labels") or {}


def get_conditions(obj: dict[str, Any]) -> list[dict[str, Any]]:
    return obj.get("status", {}).get("conditions") or []


def find_condition(obj: dict[str, Any], cond_type: str) -> dict[str, Any] | None:
    for c in get_conditions(obj):
        if c.get("type") == cond_type:
            return c
    return None
