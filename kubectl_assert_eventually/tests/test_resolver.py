import threading

import pytest

from kubectl_assert_eventually.accessor import ObjectAccessor
from kubectl_assert_eventually.conditions import exists, label_equals
from kubectl_assert_eventually.errors import (
    ChainFailure,
    ConditionNotMet,
    FieldNotFound,
    InvalidReference,
    NotFound,
    PollCancelled,
    TypeMismatch,
)
from kubectl_assert_eventually.model import ObjectRef
from kubectl_assert_eventually.poll import PollSettings
from kubectl_assert_eventually.resolver import (
    DEADLINE_SHARED,
    Hop,
    ReferenceChaser,
    child_ref,
)
from kubectl_assert_eventually.snapshot import SnapshotStore

PROCESSED = "processed"
MR_API = "nop.crossplane.io/v1alpha1"
ROOT = ObjectRef("claim-1", "default", "nop.example.org/v1alpha1", "Claim")
HOPS = [Hop.one("spec.resourceRef"), Hop.each("spec.resourceRefs")]


def managed(make, name, processed=None):
    labels = {} if processed is None else {PROCESSED: processed}
    return make(name, MR_API, "NopResource", labels=labels)


def becomes_processed(make, name, after):
    """
    Revisions of a managed resource that gains processed=true on fetch `after`.
    """
    return [managed(make, name)] * (after - 1) + [managed(make, name, "true")]


@pytest.fixture
def chain_store(store, make):
    store.add(
        make(
            "claim-1",
            "nop.example.org/v1alpha1",
            "Claim",
            spec={"resourceRef": {"name": "xr-1", "apiVersion": "x.example.org/v1", "kind": "Composed"}},
        )
    )
    store.add(
        make(
            "xr-1",
            "x.example.org/v1",
            "Composed",
            spec={
                "resourceRefs": [
                    {"name": "mr-a", "apiVersion": MR_API, "kind": "NopResource"},
                    {"name": "mr-b", "apiVersion": MR_API, "kind": "NopResource"},
                ]
            },
        )
    )
    return store


@pytest.fixture
def settings(clock):
    return PollSettings(timeout=300, interval=0.5, clock=clock, sleep=clock.sleep)


def chaser(store, settings, **kwargs):
    return ReferenceChaser(ObjectAccessor(store), settings, **kwargs)


# ----------------------------
# Claim -> composite -> managed resources
# ----------------------------


def test_all_children_eventually_processed(chain_store, settings, make):
    chain_store.add(*becomes_processed(make, "mr-a", after=3))
    chain_store.add(*becomes_processed(make, "mr-b", after=40))

    result = chaser(chain_store, settings).resolve(ROOT, HOPS, label_equals(PROCESSED))

    assert result.satisfied
    assert [str(r.name) for r in result.levels[0]] == ["xr-1"]
    assert [leaf.ref.name for leaf in result.leaves] == ["mr-a", "mr-b"]
    assert [leaf.attempts for leaf in result.leaves] == [3, 40]


def test_child_never_processed_is_named(chain_store, settings, make, clock):
    chain_store.add(managed(make, "mr-a", "true"))
    chain_store.add(managed(make, "mr-b", "false"))

    with pytest.raises(ConditionNotMet) as err:
        chaser(chain_store, settings).resolve(ROOT, HOPS, label_equals(PROCESSED))

    assert err.value.ref.name == "mr-b"
    assert str(err.value).startswith(f"label {PROCESSED} not true on resource")
    assert "mr-b" in str(err.value)
    assert clock.now == pytest.approx(0.5 + 300)


def test_first_child_failure_stops_fail_fast(chain_store, settings, make):
    chain_store.add(managed(make, "mr-a"))
    chain_store.add(managed(make, "mr-b", "true"))

    with pytest.raises(ConditionNotMet) as err:
        chaser(chain_store, settings).resolve(ROOT, HOPS, label_equals(PROCESSED))

    assert err.value.ref.name == "mr-a"
    assert chain_store.read_count("mr-b") == 0


def test_every_child_diagnosed_without_fail_fast(chain_store, settings, make):
    chain_store.add(managed(make, "mr-a"))
    chain_store.add(managed(make, "mr-b", "true"))

    with pytest.raises(ChainFailure) as err:
        chaser(chain_store, settings, fail_fast=False).resolve(ROOT, HOPS, label_equals(PROCESSED))

    result = err.value.result
    assert [leaf.satisfied for leaf in result.leaves] == [False, True]
    assert [f.ref.name for f in err.value.failures] == ["mr-a"]
    assert not result.satisfied
    assert result.to_dict()["leaves"][0]["error"].startswith("label processed")


def test_shared_deadline_is_spent_across_children(chain_store, settings, make):
    chain_store.add(*becomes_processed(make, "mr-a", after=400))
    chain_store.add(*becomes_processed(make, "mr-b", after=400))

    result = chaser(chain_store, settings).resolve(ROOT, HOPS, label_equals(PROCESSED))
    assert result.satisfied

    chain_store.add(*becomes_processed(make, "mr-a", after=400))
    chain_store.add(*becomes_processed(make, "mr-b", after=400))

    with pytest.raises(ConditionNotMet) as err:
        chaser(chain_store, settings, deadline=DEADLINE_SHARED).resolve(
            ROOT, HOPS, label_equals(PROCESSED)
        )
    assert err.value.ref.name == "mr-b"


def test_unknown_deadline_policy(chain_store, settings):
    with pytest.raises(ValueError):
        chaser(chain_store, settings, deadline="whenever")


# ----------------------------
# Hard failures are not retried
# ----------------------------


def test_missing_child_is_hard_error(chain_store, settings, make):
    chain_store.add(managed(make, "mr-a", "true"))

    with pytest.raises(NotFound) as err:
        chaser(chain_store, settings).resolve(ROOT, HOPS, label_equals(PROCESSED))
    assert err.value.ref.name == "mr-b"
    assert chain_store.read_count("mr-b") == 1


def test_missing_child_tolerated_until_created(chain_store, settings, make):
    chain_store.add(managed(make, "mr-a", "true"))
    chain_store.add(None, None, managed(make, "mr-b", "true"))

    result = chaser(chain_store, settings, tolerate_missing=True).resolve(
        ROOT, HOPS, label_equals(PROCESSED)
    )
    assert result.leaves[1].attempts == 3


def test_missing_reference_field(store, settings, make):
    store.add(make("claim-1", "nop.example.org/v1alpha1", "Claim", spec={}))

    with pytest.raises(FieldNotFound):
        chaser(store, settings).resolve(ROOT, HOPS, label_equals(PROCESSED))


def test_reference_wrong_shape(store, settings, make):
    store.add(make("claim-1", "nop.example.org/v1alpha1", "Claim", spec={"resourceRef": "xr-1"}))

    with pytest.raises(TypeMismatch):
        chaser(store, settings).resolve(ROOT, HOPS, label_equals(PROCESSED))


def test_reference_without_kind(store, settings, make):
    store.add(
        make(
            "claim-1",
            "nop.example.org/v1alpha1",
            "Claim",
            spec={"resourceRef": {"name": "xr-1", "apiVersion": "x.example.org/v1"}},
        )
    )

    with pytest.raises(InvalidReference, match="kind"):
        chaser(store, settings).resolve(ROOT, HOPS, label_equals(PROCESSED))


def test_cancelled_resolution(chain_store, make, clock):
    chain_store.add(managed(make, "mr-a"))
    chain_store.add(managed(make, "mr-b"))
    cancel = threading.Event()

    def sleep(seconds):
        clock.sleep(seconds)
        if clock.now > 10:
            cancel.set()

    settings = PollSettings(timeout=300, interval=0.5, cancel=cancel, clock=clock, sleep=sleep)
    with pytest.raises(PollCancelled):
        chaser(chain_store, settings).resolve(ROOT, HOPS, label_equals(PROCESSED))
    assert clock.now < 11


# ----------------------------
# Chains of other depths
# ----------------------------


def test_zero_hops_checks_root(store, settings, make):
    store.add(make("claim-1", "nop.example.org/v1alpha1", "Claim", labels={PROCESSED: "true"}))

    result = chaser(store, settings).resolve(ROOT, [], label_equals(PROCESSED))
    assert [leaf.ref for leaf in result.leaves] == [ROOT]


def test_deep_chain_fans_out(store, settings, make):
    store.add(make("claim-1", "nop.example.org/v1alpha1", "Claim", spec={"refs": [
        {"name": "p1", "apiVersion": "v1", "kind": "ConfigMap"},
        {"name": "p2", "apiVersion": "v1", "kind": "ConfigMap", "namespace": "other"},
    ]}))
    store.add(make("p1", "v1", "ConfigMap", spec={"child": {"name": "c1", "apiVersion": "v1", "kind": "Secret"}}))
    store.add(make("p2", "v1", "ConfigMap", namespace="other", spec={"child": {"name": "c2", "apiVersion": "v1", "kind": "Secret"}}))
    store.add(make("c1", "v1", "Secret", labels={PROCESSED: "true"}))
    store.add(make("c2", "v1", "Secret", namespace="other", labels={PROCESSED: "true"}))

    result = chaser(store, settings).resolve(
        ROOT, [Hop.each("spec.refs"), Hop.one("spec.child")], label_equals(PROCESSED)
    )

    assert [r.name for r in result.levels[0]] == ["p1", "p2"]
    assert [(leaf.ref.namespace, leaf.ref.name) for leaf in result.leaves] == [
        ("default", "c1"),
        ("other", "c2"),
    ]


def test_walk_without_check(chain_store, settings):
    levels = chaser(chain_store, settings).walk(ROOT, HOPS)
    assert [[r.name for r in level] for level in levels] == [["xr-1"], ["mr-a", "mr-b"]]
    assert chain_store.read_count("mr-a") == 0


# ----------------------------
# Reference maps
# ----------------------------


def test_child_namespace_precedence():
    parent = ObjectRef("xr", "parent-ns", "v1", "ConfigMap")
    ref = {"name": "a", "apiVersion": "v1", "kind": "Secret"}

    assert child_ref(ref, parent, Hop.one("spec.ref")).namespace == "parent-ns"
    assert child_ref(ref, parent, Hop.one("spec.ref", namespace="hop-ns")).namespace == "hop-ns"
    assert child_ref({**ref, "namespace": "own"}, parent, Hop.one("spec.ref", namespace="hop-ns")).namespace == "own"


@pytest.mark.parametrize(
    "text, many, path",
    [
        ("spec.resourceRef", False, ("spec", "resourceRef")),
        ("spec.resourceRefs:many", True, ("spec", "resourceRefs")),
        ("spec.resourceRef:one", False, ("spec", "resourceRef")),
    ],
)
def test_hop_parse(text, many, path):
    hop = Hop.parse(text)
    assert hop.many is many
    assert hop.path == path


def test_hop_parse_rejects_unknown_mode():
    with pytest.raises(ValueError):
        Hop.parse("spec.refs:some")


def test_cluster_scoped_child_reached_from_any_namespace(store, settings, make):
    claim = ObjectRef("claim-1", "team-a", "nop.example.org/v1alpha1", "Claim")
    store.add(
        make(
            "claim-1",
            "nop.example.org/v1alpha1",
            "Claim",
            namespace="team-a",
            spec={"resourceRef": {"name": "xr-1", "apiVersion": "x.example.org/v1", "kind": "Composed"}},
        )
    )
    store.add({"apiVersion": "x.example.org/v1", "kind": "Composed", "metadata": {"name": "xr-1"}})

    result = chaser(store, settings).resolve(claim, [Hop.one("spec.resourceRef")], exists())
    assert result.satisfied
    assert result.leaves[0].ref.name == "xr-1"
