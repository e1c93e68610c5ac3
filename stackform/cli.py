#!/usr/bin/env python3
"""
stackform CLI

Usage:
    stackform validate release.yaml [--json] [--strict]
    stackform render release.yaml [-o manifests.yaml] [--format yaml|json]
    stackform diff old.yaml new.yaml [--json]
    stackform plan release.yaml [--json]
    stackform rules
    stackform serve

Exit codes: 0 success, 1 blocking violations (or warnings with --strict),
2 malformed input.
"""
import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from stackform import __version__
from stackform.exceptions import ConfigurationError, ReleaseValidationError
from stackform.releases.assembler import assemble
from stackform.releases.documents import dump_json, dump_yaml, load_manifests
from stackform.releases.loader import load_release
from stackform.releases.planner import ChangeType, Plan, diff
from stackform.releases.revisions import plan_release
from stackform.releases.validator import Violation, list_rules, validate_release

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_VIOLATIONS = 1
EXIT_CONFIG_ERROR = 2


def _format_violation(violation: Violation) -> str:
    where = ".".join(part for part in (violation.service, violation.path) if part)
    line = f"{violation.severity.value.upper():8} {violation.rule:4} {where}: {violation.message}"
    if violation.related:
        line += f" [-> {violation.related}]"
    return line


def _print_plan(plan: Plan) -> None:
    markers = {
        ChangeType.ADDED: "+",
        ChangeType.REMOVED: "-",
        ChangeType.CHANGED: "~",
        ChangeType.UNCHANGED: "=",
    }
    for entry in plan.entries:
        print(f"{markers[entry.action]} {entry.identity}")
        for path in entry.field_paths:
            print(f"    {path}")
    summary = plan.summary()
    print(", ".join(f"{count} {action.lower()}" for action, count in summary.items()))


def cmd_validate(args) -> int:
    """Validate a release and report every violation."""
    release = load_release(args.file)
    report = validate_release(release)

    if args.json:
        print(dump_json(report.to_dict()), end="")
    else:
        for violation in report.violations:
            print(_format_violation(violation))
        status = "valid" if report.is_valid else "invalid"
        print(
            f"{report.release}: {status} "
            f"({len(report.blocking)} blocking, {len(report.warnings)} warning(s))"
        )

    if not report.is_valid:
        return EXIT_VIOLATIONS
    if args.strict and report.warnings:
        return EXIT_VIOLATIONS
    return EXIT_OK


def cmd_render(args) -> int:
    """Render a release into ordered manifests."""
    release = load_release(args.file)
    assembled = assemble(release)

    if args.format == "json":
        output = dump_json(assembled.manifests)
    else:
        output = dump_yaml(assembled.manifests)

    if args.output:
        Path(args.output).write_text(output)
        logger.info(f"Wrote {len(assembled.manifests)} manifest(s) to {args.output}")
    else:
        sys.stdout.write(output)

    for warning in assembled.warnings:
        print(_format_violation(warning), file=sys.stderr)
    return EXIT_OK


def cmd_diff(args) -> int:
    """Compare two rendered manifest files."""
    plan = diff(load_manifests(args.old), load_manifests(args.new))
    if args.json:
        print(dump_json(plan.to_dict()), end="")
    else:
        _print_plan(plan)
    return EXIT_OK


def cmd_plan(args) -> int:
    """Render a release and diff it against the last stored revision."""
    release = load_release(args.file)
    record = plan_release(release)
    if args.json:
        print(dump_json(record), end="")
        return EXIT_OK

    print(f"Plan {record['planId']} for {record['releaseId']}: "
          f"revision {record['revisionFrom']} -> {record['revisionTo']}")
    markers = {"Added": "+", "Removed": "-", "Changed": "~", "Unchanged": "="}
    for entry in record["entries"]:
        print(f"{markers[entry['action']]} {entry['kind']}/{entry['name']}")
        for path in entry["fieldPaths"]:
            print(f"    {path}")
    return EXIT_OK


def cmd_rules(args) -> int:
    """List registered validation rules."""
    for rule in list_rules():
        print(f"{rule.rule_id:4} {rule.severity.value:8} {rule.scope:8} {rule.summary}")
    return EXIT_OK


def cmd_serve(args) -> int:
    """Run the HTTP API."""
    from stackform.main import run
    run()
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stackform",
        description="Deployment descriptor compiler",
    )
    parser.add_argument("--version", action="version", version=f"stackform {__version__}")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "WARNING"),
        help="Logging level (default: WARNING or $LOG_LEVEL)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_parser = subparsers.add_parser("validate", help="validate a release document")
    validate_parser.add_argument("file", help="release document (YAML or JSON)")
    validate_parser.add_argument("--json", action="store_true", help="print the report as JSON")
    validate_parser.add_argument("--strict", action="store_true", help="treat warnings as failures")
    validate_parser.set_defaults(func=cmd_validate)

    render_parser = subparsers.add_parser("render", help="render a release into manifests")
    render_parser.add_argument("file", help="release document (YAML or JSON)")
    render_parser.add_argument("-o", "--output", help="write manifests to this file")
    render_parser.add_argument("--format", choices=("yaml", "json"), default="yaml")
    render_parser.set_defaults(func=cmd_render)

    diff_parser = subparsers.add_parser("diff", help="compare two rendered manifest files")
    diff_parser.add_argument("old", help="previous manifests")
    diff_parser.add_argument("new", help="new manifests")
    diff_parser.add_argument("--json", action="store_true", help="print the plan as JSON")
    diff_parser.set_defaults(func=cmd_diff)

    plan_parser = subparsers.add_parser("plan", help="plan a release against its last revision")
    plan_parser.add_argument("file", help="release document (YAML or JSON)")
    plan_parser.add_argument("--json", action="store_true", help="print the plan as JSON")
    plan_parser.set_defaults(func=cmd_plan)

    rules_parser = subparsers.add_parser("rules", help="list validation rules")
    rules_parser.set_defaults(func=cmd_rules)

    serve_parser = subparsers.add_parser("serve", help="run the HTTP API")
    serve_parser.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        return args.func(args)
    except ConfigurationError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        for item in exc.details.get("errors", [])[1:]:
            print(f"  {item['path']}: {item['message']}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except ReleaseValidationError as exc:
        print(str(exc), file=sys.stderr)
        for violation in exc.report.violations:
            print(_format_violation(violation), file=sys.stderr)
        return EXIT_VIOLATIONS


if __name__ == "__main__":
    sys.exit(main())
