from collections.abc import Sequence

from kubectl_assert_eventually import certs
from kubectl_assert_eventually.conditions import Condition, exists, has_condition, label_equals
from kubectl_assert_eventually.config import EnvConfig
from kubectl_assert_eventually.errors import ConditionNotMet
from kubectl_assert_eventually.feature import Context, StepFunc, StepReporter
from kubectl_assert_eventually.loader import manifest_refs
from kubectl_assert_eventually.model import ObjectRef
from kubectl_assert_eventually.resolver import Hop

LABEL_AREA = "area"
LABEL_PROCESSED = "labelizer.xfn.crossplane.io/processed"

CLAIM_TO_MANAGED = (Hop.one("spec.resourceRef"), Hop.each("spec.resourceRefs"))


def _named(fn: StepFunc, name: str) -> StepFunc:
    fn.__name__ = name
    return fn


# ----------------------------
# Manifest driven assessments
# ----------------------------


def resources_created_within(timeout: float, manifest_dir: str, pattern: str = "*.yaml") -> StepFunc:
    """
    Wait until every object declared in the manifests can be fetched.
    """

    def step(ctx: Context, t: StepReporter, cfg: EnvConfig) -> Context:
        chaser = cfg.chaser(timeout, tolerate_missing=True)
        for ref in manifest_refs(manifest_dir, pattern, cfg.namespace):
            try:
                chaser.check_leaf(ref, exists(), timeout)
            except ConditionNotMet:
                t.fatalf("resource %s was not created within %gs", ref, timeout)
            t.logf("resource %s exists", ref)
        return ctx

    return _named(step, f"resources_created_within({pattern})")


def resources_have_condition_within(
    timeout: float,
    manifest_dir: str,
    pattern: str,
    cond_type: str,
    status: str = "True",
) -> StepFunc:
    """
    Wait until every object declared in the manifests reports the status
    condition, e.g. Available=True on a claim.
    """
    condition = has_condition(cond_type, status)

    def step(ctx: Context, t: StepReporter, cfg: EnvConfig) -> Context:
        chaser = cfg.chaser(timeout, tolerate_missing=True)
        for ref in manifest_refs(manifest_dir, pattern, cfg.namespace):
            leaf = chaser.check_leaf(ref, condition, timeout)
            t.logf("%s holds on %s after %d attempts", condition, ref, leaf.attempts)
        return ctx

    return _named(step, f"resources_have_condition_within({pattern}, {cond_type})")


# ----------------------------
# Reference chains
# ----------------------------


def references_satisfy(
    root: ObjectRef,
    hops: Sequence[Hop],
    condition: Condition,
    timeout: float | None = None,
    fail_fast: bool = True,
) -> StepFunc:
    """
    Follow `hops` from `root` and require `condition` on every resource at
    the end of the chain. The chain result is stored in ctx["chain"].
    """

    def step(ctx: Context, t: StepReporter, cfg: EnvConfig) -> Context:
        chaser = cfg.chaser(timeout, fail_fast=fail_fast)
        result = chaser.resolve(root, hops, condition)
        t.logf("%s holds on %d resource(s) under %s", condition, len(result.leaves), root)
        return {**ctx, "chain": result}

    return _named(step, f"references_satisfy({root.name})")


def managed_resources_processed_by_function(
    claim_name: str = "fn-labelizer",
    namespace: str = "default",
    api_version: str = "nop.example.org/v1alpha1",
    kind: str = "NopResource",
    label: str = LABEL_PROCESSED,
    value: str = "true",
) -> StepFunc:
    """
    Claim -> composite (spec.resourceRef) -> managed resources
    (spec.resourceRefs); every managed resource must carry `label=value`.
    """
    root = ObjectRef(name=claim_name, namespace=namespace, api_version=api_version, kind=kind)
    check = references_satisfy(root, CLAIM_TO_MANAGED, label_equals(label, value))

    def step(ctx: Context, t: StepReporter, cfg: EnvConfig) -> Context:
        try:
            return check(ctx, t, cfg)
        except ConditionNotMet as exc:
            t.fatalf("expected label %s value to be %s on %s", label, value, exc.ref)

    return _named(step, "managed_resources_processed_by_function")


# ----------------------------
# Setup helpers
# ----------------------------


def tls_certificate_manifests(dns_name: str, namespace: str) -> StepFunc:
    """
    Generate a CA for `dns_name` and queue the Secret (in `namespace`) and
    the CA bundle ConfigMap (in the run namespace) under ctx["manifests"]
    for the setup collaborator that applies them.
    """

    def step(ctx: Context, t: StepReporter, cfg: EnvConfig) -> Context:
        cert_pem, key_pem = certs.generate(dns_name)
        manifests = list(ctx.get("manifests", []))
        manifests.append(certs.tls_secret_manifest(cert_pem, key_pem, namespace))
        manifests.append(certs.ca_configmap_manifest(cert_pem, cfg.namespace))
        t.logf("generated CA for %s", dns_name)
        return {**ctx, "manifests": manifests, "ca_pem": cert_pem}

    return _named(step, f"tls_certificate_manifests({dns_name})")
