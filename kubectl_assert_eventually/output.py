import json
from typing import Any

import yaml

# ----------------------------
# Output formatting
# ----------------------------


def _chain_lines(chain: dict[str, Any]) -> list[str]:
    lines = [
        f"Root: {chain['root']}",
        f"Condition: {chain['condition']}",
        f"Result: {'satisfied' if chain['satisfied'] else 'NOT satisfied'}",
    ]

    for depth, level in enumerate(chain.get("levels", []), start=1):
        lines.append(f"\nLevel {depth}:")
        for ref in level:
            lines.append(f"  - {ref}")

    leaves = chain.get("leaves", [])
    if leaves:
        lines.append("\nResources:")
        for leaf in leaves:
            verdict = "ok" if leaf["satisfied"] else "FAILED"
            line = f"  [{verdict}] {leaf['resource']} ({leaf['attempts']} attempts)"
            if leaf.get("error"):
                line += f": {leaf['error']}"
            lines.append(line)
    return lines


def _feature_lines(feature: dict[str, Any]) -> list[str]:
    lines = [f"Feature: {feature['feature']}", f"State: {feature['state']}"]
    for phase in feature.get("phases", []):
        lines.append(
            f"  {phase['kind']:<6} {phase['name']}: {phase['state']} ({phase['duration']}s)"
        )
    if feature.get("failed_step"):
        lines.append(f"\nFailed step: {feature['failed_step']}")
        lines.append(f"Cause: {feature['cause']}")
    return lines


def render(report: dict[str, Any], fmt: str = "text") -> str:
    """
    Render a verification report {"feature": ..., "chain": ...}.
    - text: feature summary, then the discovered chain with a verdict per leaf
    - json / yaml: the report dict as is
    """
    if fmt == "json":
        return json.dumps(report, indent=2)

    if fmt == "yaml":
        return yaml.safe_dump(report, sort_keys=False)

    lines = _feature_lines(report["feature"])
    if report.get("chain"):
        lines.append("")
        lines.extend(_chain_lines(report["chain"]))
    return "\n".join(lines)
