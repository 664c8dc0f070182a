import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from kubectl_assert_eventually.accessor import ObjectAccessor
from kubectl_assert_eventually.conditions import Condition
from kubectl_assert_eventually.errors import (
    AssertionEngineError,
    ChainFailure,
    ConditionNotMet,
    InvalidReference,
    NotFound,
    PollCancelled,
    PollTimeout,
)
from kubectl_assert_eventually.fields import (
    FieldPath,
    as_path,
    get_string_map,
    get_string_map_sequence,
)
from kubectl_assert_eventually.model import ObjectRef
from kubectl_assert_eventually.poll import PollSettings, poll

logger = logging.getLogger(__name__)

DEADLINE_PER_CHILD = "per_child"
DEADLINE_SHARED = "shared"
DEADLINE_POLICIES = (DEADLINE_PER_CHILD, DEADLINE_SHARED)


@dataclass(frozen=True)
class Hop:
    """
    One step down a reference chain.

    `path` points at a reference map (many=False) or a list of reference
    maps (many=True). `namespace` overrides the inherited namespace for
    references that do not carry their own.
    """

    path: FieldPath
    many: bool = False
    namespace: str | None = None

    @classmethod
    def one(cls, path: str | Sequence[str], namespace: str | None = None) -> "Hop":
        return cls(as_path(path), many=False, namespace=namespace)

    @classmethod
    def each(cls, path: str | Sequence[str], namespace: str | None = None) -> "Hop":
        return cls(as_path(path), many=True, namespace=namespace)

    @classmethod
    def parse(cls, text: str) -> "Hop":
        """
        Parse the CLI form "spec.resourceRefs:many" / "spec.resourceRef".
        """
        path, _, mode = text.partition(":")
        if mode not in ("", "one", "many"):
            raise ValueError(f"hop mode must be 'one' or 'many', got {mode!r}")
        return cls(as_path(path), many=mode == "many")


@dataclass
class LeafResult:
    ref: ObjectRef
    satisfied: bool = False
    attempts: int = 0
    error: AssertionEngineError | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource": str(self.ref),
            "satisfied": self.satisfied,
            "attempts": self.attempts,
            "error": str(self.error) if self.error else None,
        }


@dataclass
class ChainResult:
    root: ObjectRef
    condition: str = ""
    levels: list[list[ObjectRef]] = field(default_factory=list)
    leaves: list[LeafResult] = field(default_factory=list)

    @property
    def satisfied(self) -> bool:
        return all(leaf.satisfied for leaf in self.leaves)

    def failed(self) -> list[LeafResult]:
        return [leaf for leaf in self.leaves if not leaf.satisfied]

    def to_dict(self) -> dict[str, Any]:
        return {
            "root": str(self.root),
            "condition": self.condition,
            "satisfied": self.satisfied,
            "levels": [[str(ref) for ref in level] for level in self.levels],
            "leaves": [leaf.to_dict() for leaf in self.leaves],
        }


def child_ref(reference: dict[str, str], parent: ObjectRef, hop: Hop) -> ObjectRef:
    """
    Build the ObjectRef a reference map points at.

    Namespace precedence: the reference's own namespace, then the hop's,
    then the parent's.
    """
    missing = [k for k in ("name", "apiVersion", "kind") if not reference.get(k)]
    if missing:
        raise InvalidReference(
            f"reference at {'.'.join(hop.path)} on {parent} is missing "
            f"{', '.join(missing)}: {reference}",
            ref=parent,
        )

    return ObjectRef(
        name=reference["name"],
        namespace=reference.get("namespace") or hop.namespace or parent.namespace,
        api_version=reference["apiVersion"],
        kind=reference["kind"],
    )


class ReferenceChaser:
    """
    Follows embedded object references from a root object down an
    arbitrarily deep chain, then checks every leaf until it holds.
    """

    def __init__(
        self,
        accessor: ObjectAccessor,
        settings: PollSettings | None = None,
        *,
        deadline: str = DEADLINE_PER_CHILD,
        fail_fast: bool = True,
        tolerate_missing: bool = False,
    ):
        if deadline not in DEADLINE_POLICIES:
            raise ValueError(
                f"deadline must be one of {DEADLINE_POLICIES}, got {deadline!r}"
            )
        self.accessor = accessor
        self.settings = settings or PollSettings()
        self.deadline = deadline
        self.fail_fast = fail_fast
        self.tolerate_missing = tolerate_missing

    # ----------------------------
    # Traversal
    # ----------------------------

    def references(self, obj: dict[str, Any], parent: ObjectRef, hop: Hop) -> list[ObjectRef]:
        if hop.many:
            refs = get_string_map_sequence(obj, hop.path)
        else:
            refs = [get_string_map(obj, hop.path)]
        return [child_ref(r, parent, hop) for r in refs]

    def walk(self, root: ObjectRef, hops: Sequence[Hop]) -> list[list[ObjectRef]]:
        """
        Fetch each level and collect the references of the next one.
        Returns one list of refs per hop; the last list holds the leaves.
        """
        levels: list[list[ObjectRef]] = []
        current = [root]

        for hop in hops:
            following: list[ObjectRef] = []
            for ref in current:
                obj = self.accessor.get(ref)
                children = self.references(obj, ref, hop)
                logger.debug(
                    "%s -> %s: %s",
                    ref,
                    ".".join(hop.path),
                    ", ".join(str(c) for c in children) or "<none>",
                )
                following.extend(children)
            levels.append(following)
            current = following

        return levels

    # ----------------------------
    # Terminal checks
    # ----------------------------

    def check_leaf(self, ref: ObjectRef, condition: Condition, timeout: float) -> LeafResult:
        """
        Poll one leaf until `condition` holds. Raises ConditionNotMet naming
        the leaf when it never does.
        """
        result = LeafResult(ref=ref)

        def satisfied() -> bool:
            result.attempts += 1
            try:
                obj = self.accessor.get(ref)
            except NotFound:
                if self.tolerate_missing:
                    return False
                raise
            return condition(obj)

        try:
            poll(satisfied, self.settings.with_timeout(timeout), description=f"{condition} on {ref}")
        except PollCancelled:
            raise
        except PollTimeout as exc:
            raise ConditionNotMet(
                str(condition), ref, attempts=result.attempts, timeout=timeout
            ) from exc

        result.satisfied = True
        return result

    def resolve(
        self, root: ObjectRef, hops: Sequence[Hop], condition: Condition
    ) -> ChainResult:
        """
        Walk the chain from `root` and require `condition` on every leaf.

        With fail_fast the first leaf that times out is raised as
        ConditionNotMet; otherwise every leaf is diagnosed and the failures
        are raised together as ChainFailure. Hard errors (missing objects,
        bad shapes, cancellation) always propagate at once.
        """
        result = ChainResult(root=root, condition=str(condition))
        result.levels = self.walk(root, hops)
        leaves = result.levels[-1] if result.levels else [root]

        clock = self.settings.clock
        started = clock()
        failures: list[AssertionEngineError] = []

        for ref in leaves:
            timeout = self.settings.timeout
            if self.deadline == DEADLINE_SHARED:
                timeout = max(0.0, self.settings.timeout - (clock() - started))

            try:
                leaf = self.check_leaf(ref, condition, timeout)
            except ConditionNotMet as exc:
                logger.warning("%s", exc)
                result.leaves.append(
                    LeafResult(ref=ref, satisfied=False, attempts=exc.attempts, error=exc)
                )
                if self.fail_fast:
                    raise
                failures.append(exc)
                continue

            logger.debug("%s holds on %s after %d attempts", condition, ref, leaf.attempts)
            result.leaves.append(leaf)

        if failures:
            raise ChainFailure(failures, result=result)

        logger.info(
            "%s holds on all %d resource(s) reachable from %s",
            condition,
            len(result.leaves),
            root,
        )
        return result
