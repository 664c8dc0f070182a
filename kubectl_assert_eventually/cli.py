import argparse
import logging
import signal
import sys
from dataclasses import replace

from kubectl_assert_eventually.accessor import ObjectAccessor
from kubectl_assert_eventually.conditions import has_condition, label_equals
from kubectl_assert_eventually.config import load_config, positive_float
from kubectl_assert_eventually.errors import AssertionEngineError, ChainFailure
from kubectl_assert_eventually.feature import FeatureBuilder, FeatureRunner
from kubectl_assert_eventually.funcs import references_satisfy
from kubectl_assert_eventually.model import ObjectRef
from kubectl_assert_eventually.output import render
from kubectl_assert_eventually.resolver import DEADLINE_POLICIES, Hop
from kubectl_assert_eventually.snapshot import load_snapshot

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def _key_value(text: str) -> tuple[str, str]:
    key, sep, value = text.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {text!r}")
    return key, value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Wait until every resource reachable through a reference chain satisfies a check"
    )

    parser.add_argument("--name", required=True, help="Root object name")
    parser.add_argument("--namespace", help="Root object namespace (default: config namespace)")
    parser.add_argument("--api-version", required=True, help="Root object apiVersion")
    parser.add_argument("--kind", required=True, help="Root object kind")
    parser.add_argument(
        "--hop",
        action="append",
        default=[],
        type=Hop.parse,
        help="Reference field path, e.g. spec.resourceRef or spec.resourceRefs:many (repeatable)",
    )

    check = parser.add_mutually_exclusive_group(required=True)
    check.add_argument("--label", type=_key_value, help="Require label KEY=VALUE on every leaf")
    check.add_argument("--condition", type=_key_value, help="Require status condition TYPE=STATUS")

    parser.add_argument("--timeout", type=float, help="Seconds to wait per leaf")
    parser.add_argument("--interval", type=float, help="Seconds between polls")
    parser.add_argument("--deadline", choices=DEADLINE_POLICIES)
    parser.add_argument("--snapshot", help="Directory or file of JSON/YAML objects instead of a live cluster")
    parser.add_argument("--config", help="YAML config file")
    parser.add_argument("--kubeconfig")
    parser.add_argument("--context")

    parser.add_argument(
        "--format",
        choices=["text", "json", "yaml"],
        default="text",
        help="Output format (text, json, yaml)",
    )
    parser.add_argument("--verbose", action="store_true")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        cfg = load_config(args.config)
        overrides = {
            "poll_timeout": args.timeout,
            "poll_interval": args.interval,
            "deadline": args.deadline,
            "kubeconfig": args.kubeconfig,
            "kube_context": args.context,
        }
        if args.timeout is not None:
            overrides["poll_timeout"] = positive_float("--timeout", args.timeout)
        if args.interval is not None:
            overrides["poll_interval"] = positive_float("--interval", args.interval)
        cfg = replace(cfg, **{k: v for k, v in overrides.items() if v is not None})
        if args.snapshot:
            cfg = cfg.with_accessor(ObjectAccessor(load_snapshot(args.snapshot)))
        else:
            cfg = cfg.connect()
    except (AssertionEngineError, OSError) as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return EXIT_USAGE

    root = ObjectRef(
        name=args.name,
        namespace=args.namespace or cfg.namespace,
        api_version=args.api_version,
        kind=args.kind,
    )
    if args.label:
        condition = label_equals(*args.label)
    else:
        condition = has_condition(*args.condition)

    feature = (
        FeatureBuilder("VerifyReferenceChain")
        .assess("ReferencesSatisfyCheck", references_satisfy(root, args.hop, condition, fail_fast=False))
        .feature()
    )

    runner = FeatureRunner(cfg)
    previous = signal.signal(signal.SIGINT, lambda *_: runner.cancel())
    try:
        result = runner.run(feature)
    finally:
        signal.signal(signal.SIGINT, previous)

    chain = result.ctx.get("chain")
    if result.failure is not None and isinstance(result.failure.cause, ChainFailure):
        chain = result.failure.cause.result

    report = {
        "feature": result.to_dict(),
        "chain": chain.to_dict() if chain is not None else None,
    }
    print(render(report, args.format))

    return EXIT_OK if result.succeeded else EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
