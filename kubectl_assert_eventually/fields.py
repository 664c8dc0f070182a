import json
from collections.abc import Mapping, Sequence
from typing import Any

from kubectl_assert_eventually.errors import FieldNotFound, TypeMismatch

FieldPath = tuple[str, ...]


def as_path(path: str | Sequence[str]) -> FieldPath:
    """
    Accept either a dotted string ("spec.resourceRef") or a sequence of segments.
    """
    if isinstance(path, str):
        segments = tuple(p for p in path.split(".") if p)
    else:
        segments = tuple(path)
    if not segments:
        raise ValueError("field path must have at least one segment")
    return segments


def _describe(value: Any) -> str:
    if isinstance(value, Mapping):
        return "mapping"
    if isinstance(value, list):
        return "sequence"
    return type(value).__name__


def stringify(value: Any) -> str:
    """
    Canonical string form of a scalar read into a string map.
    """
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (Mapping, list)):
        return json.dumps(value, separators=(",", ":"), sort_keys=True)
    return str(value)


# ----------------------------
# Path interpreter
# ----------------------------


def get_nested_field(obj: Mapping[str, Any], path: str | Sequence[str]) -> Any:
    """
    Walk `path` through nested mappings and return the terminal value.

    Every intermediate value must be a mapping. Raises FieldNotFound when a
    segment is absent and TypeMismatch when a segment lands on a scalar or
    sequence.
    """
    segments = as_path(path)
    current: Any = obj

    for i, segment in enumerate(segments):
        if not isinstance(current, Mapping):
            walked = ".".join(segments[:i])
            raise TypeMismatch(
                f"{walked} is a {_describe(current)}, not a mapping "
                f"(while reading {'.'.join(segments)})",
                path=segments,
            )
        if segment not in current:
            raise FieldNotFound(
                f"field not found at path {'.'.join(segments)} "
                f"(missing segment {segment!r})",
                path=segments,
            )
        current = current[segment]

    return current


def _flat_string_map(value: Any, segments: FieldPath) -> dict[str, str]:
    if not isinstance(value, Mapping):
        raise TypeMismatch(
            f"{'.'.join(segments)} is a {_describe(value)}, not a mapping",
            path=segments,
        )

    result: dict[str, str] = {}
    for key, item in value.items():
        if isinstance(item, (Mapping, list)):
            raise TypeMismatch(
                f"{'.'.join(segments)}.{key} is a {_describe(item)}, "
                f"expected a scalar",
                path=segments,
            )
        result[str(key)] = stringify(item)
    return result


def get_string_map(obj: Mapping[str, Any], path: str | Sequence[str]) -> dict[str, str]:
    """
    Read a flat mapping of scalars at `path`; scalars are stringified.
    """
    segments = as_path(path)
    return _flat_string_map(get_nested_field(obj, segments), segments)


def get_string_map_sequence(
    obj: Mapping[str, Any], path: str | Sequence[str]
) -> list[dict[str, str]]:
    """
    Read a sequence of mappings at `path`.

    Each element must itself be a mapping. Its values are stringified,
    nested values included (rendered as compact JSON).
    """
    segments = as_path(path)
    value = get_nested_field(obj, segments)

    if not isinstance(value, list):
        raise TypeMismatch(
            f"{'.'.join(segments)} is a {_describe(value)}, not a sequence",
            path=segments,
        )

    items: list[dict[str, str]] = []
    for index, element in enumerate(value):
        if not isinstance(element, Mapping):
            raise TypeMismatch(
                f"{'.'.join(segments)}[{index}] is a {_describe(element)}, "
                f"not a mapping",
                path=segments,
            )
        items.append({str(k): stringify(v) for k, v in element.items()})
    return items
