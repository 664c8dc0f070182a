import logging
import os
from typing import Any

from kubectl_assert_eventually.errors import NotFound
from kubectl_assert_eventually.model import (
    load_json,
    load_yaml_documents,
    normalize_items,
    parse_group_version,
)

logger = logging.getLogger(__name__)

CLUSTER_SCOPE = ""

_Key = tuple[str, str, str, str, str]


def _key(obj: dict[str, Any], namespace: str | None = None) -> _Key | None:
    meta = obj.get("metadata", {}) or {}
    name = meta.get("name")
    kind = obj.get("kind")
    if not name or not kind:
        return None

    group, version = parse_group_version(obj.get("apiVersion", ""))
    # No namespace means cluster-scoped
    ns = meta.get("namespace") or namespace or CLUSTER_SCOPE
    return group, version, kind, ns, name


class SnapshotStore:
    """
    In-memory view of cluster objects, for offline replays and tests.

    An object can be registered with several revisions; every fetch of that
    object advances one revision and the last one repeats forever. This is
    how background reconciliation is replayed deterministically.
    """

    def __init__(self, objects: list[dict[str, Any]] | None = None):
        self._revisions: dict[_Key, list[dict[str, Any]]] = {}
        self._cursor: dict[_Key, int] = {}
        self.reads: list[_Key] = []
        for obj in objects or []:
            self.add(obj)

    def add(self, *revisions: dict[str, Any], namespace: str | None = None) -> None:
        """
        Register an object. Revisions are served in order, one per fetch.
        A revision may be None to model an object that does not exist yet.
        Objects without metadata.namespace are filed under `namespace`, or
        as cluster-scoped when none is given.
        """
        key = None
        for rev in revisions:
            if rev is not None:
                key = _key(rev, namespace)
                break
        if key is None:
            raise ValueError("an object needs metadata.name and kind")

        self._revisions[key] = list(revisions)
        self._cursor[key] = 0

    def get(
        self, namespace: str, name: str, group: str, version: str, kind: str
    ) -> dict[str, Any]:
        key = (group, version, kind, namespace, name)
        self.reads.append(key)

        if key not in self._revisions:
            # Cluster-scoped objects answer for any namespace
            key = (group, version, kind, CLUSTER_SCOPE, name)
        revisions = self._revisions.get(key)
        if not revisions:
            raise NotFound(f"{kind}.{group}/{version} {namespace}/{name} not found")

        cursor = self._cursor[key]
        self._cursor[key] = min(cursor + 1, len(revisions) - 1)

        obj = revisions[cursor]
        if obj is None:
            raise NotFound(f"{kind}.{group}/{version} {namespace}/{name} not found")
        return obj

    def read_count(self, name: str) -> int:
        return sum(1 for key in self.reads if key[4] == name)

    def __len__(self) -> int:
        return len(self._revisions)


# ----------------------------
# Loading
# ----------------------------


def load_snapshot(path: str) -> SnapshotStore:
    """
    Load every .json / .yaml / .yml file under `path` (or the single file)
    into a SnapshotStore. List kinds are flattened; objects without a
    namespace are cluster-scoped.
    """
    files: list[str] = []
    if os.path.isdir(path):
        for root, _dirs, names in os.walk(path):
            for f in sorted(names):
                files.append(os.path.join(root, f))
    else:
        files.append(path)

    store = SnapshotStore()
    for f in files:
        if f.endswith(".json"):
            docs = normalize_items(load_json(f))
        elif f.endswith((".yaml", ".yml")):
            docs = []
            for doc in load_yaml_documents(f):
                docs.extend(normalize_items(doc))
        else:
            continue

        for obj in docs:
            if _key(obj) is None:
                logger.debug("Skipping unnamed object in %s", f)
                continue
            store.add(obj)

    logger.debug("Loaded %d objects from %s", len(store), path)
    return store
