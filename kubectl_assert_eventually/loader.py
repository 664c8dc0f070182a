import glob
import os
from typing import Any

from kubectl_assert_eventually.model import ObjectRef, load_yaml_documents, ref_of

# ----------------------------
# Manifest loader
# ----------------------------


def load_manifests(manifest_dir: str, pattern: str = "*.yaml") -> list[dict[str, Any]]:
    """
    Read every YAML document from files in `manifest_dir` matching `pattern`.
    Files are read in sorted order; empty documents are skipped.
    """
    files = sorted(glob.glob(os.path.join(manifest_dir, pattern)))
    if not files:
        raise FileNotFoundError(f"no manifests match {pattern} in {manifest_dir}")

    objects: list[dict[str, Any]] = []
    for f in files:
        for doc in load_yaml_documents(f):
            if not isinstance(doc, dict):
                raise ValueError(f"{f}: each manifest document must be a mapping")
            objects.append(doc)
    return objects


def manifest_refs(
    manifest_dir: str, pattern: str = "*.yaml", namespace: str | None = None
) -> list[ObjectRef]:
    """
    ObjectRefs of the manifests; objects without a namespace land in
    `namespace`.
    """
    return [ref_of(obj, namespace) for obj in load_manifests(manifest_dir, pattern)]
