"""Command-line interface for normalizing scans and evaluating policies.

Results are printed to stdout as JSON; logs go to stderr. Exit status:
0 allowed (or plain output), 1 blocked by policy, 2 on a typed error.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError

from certus_vuln.core.config import get_settings
from certus_vuln.core.exceptions import CertusException, ConfigurationError, MalformedInputError
from certus_vuln.core.logging import configure_logging
from certus_vuln.normalization import NormalizeOptions, detect_schema_version, normalize
from certus_vuln.policies.conditional import ConditionalPolicyEvaluator
from certus_vuln.policies.engine import PolicyEngine
from certus_vuln.schemas.conditional import Environment, HistoricalScan
from certus_vuln.schemas.normalized_vulnerability import NormalizationFormat, NormalizedScanResult
from certus_vuln.schemas.policy import Policy, PolicyException

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_BLOCKED = 1
EXIT_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="certus-vuln",
        description="Normalize scanner output and evaluate vulnerability policies.",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override the configured log level (default: CERTUS_VULN_LOG_LEVEL or INFO)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    format_choices = [f.value for f in NormalizationFormat]

    normalize_cmd = subparsers.add_parser("normalize", help="Print the canonical scan result as JSON")
    normalize_cmd.add_argument("payload", help="Path to the raw scanner JSON")
    _add_format_arguments(normalize_cmd, format_choices)
    normalize_cmd.add_argument("--schema-version", default=None, help="Override the detected schema version")
    normalize_cmd.add_argument("--scanner-version", default=None, help="Override the scanner version")

    detect_cmd = subparsers.add_parser("detect-version", help="Print the detected raw schema version")
    detect_cmd.add_argument("payload", help="Path to the raw scanner JSON")

    evaluate_cmd = subparsers.add_parser("evaluate", help="Evaluate policies against a scan")
    evaluate_cmd.add_argument("payload", help="Path to the raw scanner JSON")
    evaluate_cmd.add_argument(
        "--policies",
        required=True,
        help="JSON file with a list of policies, or {'policies': [...], 'exceptions': [...]}",
    )
    _add_format_arguments(evaluate_cmd, format_choices)

    conditional_cmd = subparsers.add_parser("conditional", help="Evaluate the new-vs-existing policy")
    conditional_cmd.add_argument("payload", help="Path to the raw scanner JSON")
    conditional_cmd.add_argument(
        "--history",
        required=True,
        help="JSON file with earlier scans (canonical results or {scan_id, scanned_at, vulnerabilities})",
    )
    conditional_cmd.add_argument(
        "--environment",
        choices=[e.value for e in Environment],
        default=None,
        help="Deployment environment (default: CERTUS_VULN_DEFAULT_ENVIRONMENT or ALL)",
    )
    _add_format_arguments(conditional_cmd, format_choices)

    return parser


def _add_format_arguments(subparser: argparse.ArgumentParser, choices: list[str]) -> None:
    subparser.add_argument(
        "--format",
        dest="source_format",
        choices=choices,
        default=None,
        help="Scanner format (default: auto-detect)",
    )


def _read_json(path: str, kind: str) -> Any:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigurationError(
            message=f"Cannot read {kind} file",
            error_code="unreadable_file",
            details={"path": path, "error": str(exc)},
        ) from exc
    except json.JSONDecodeError as exc:
        error_type = MalformedInputError if kind == "payload" else ConfigurationError
        raise error_type(
            message=f"{kind.capitalize()} file is not valid JSON",
            error_code="invalid_json",
            details={"path": path, "error": str(exc)},
        ) from exc


def _load_scan(args: argparse.Namespace) -> NormalizedScanResult:
    raw = _read_json(args.payload, "payload")
    options = NormalizeOptions(
        schema_version=getattr(args, "schema_version", None),
        scanner_version=getattr(args, "scanner_version", None),
    )
    return normalize(raw, args.source_format, options)


def _load_policies(path: str) -> tuple[list[Policy], list[PolicyException]]:
    data = _read_json(path, "policies")
    if isinstance(data, list):
        data = {"policies": data}
    if not isinstance(data, dict):
        raise ConfigurationError(
            message="Policies file must hold a list or an object",
            error_code="invalid_policies",
            details={"path": path},
        )
    try:
        policies = [Policy.model_validate(item) for item in data.get("policies", [])]
        exceptions = [PolicyException.model_validate(item) for item in data.get("exceptions", [])]
    except ValidationError as exc:
        raise ConfigurationError(
            message="Invalid policy record",
            error_code="invalid_policies",
            details={"path": path, "errors": exc.errors(include_url=False)},
        ) from exc
    return policies, exceptions


def _load_history(path: str) -> list[HistoricalScan]:
    data = _read_json(path, "history")
    if not isinstance(data, list):
        raise ConfigurationError(
            message="History file must hold a list of scans",
            error_code="invalid_history",
            details={"path": path},
        )
    try:
        return [
            HistoricalScan.from_result(NormalizedScanResult.model_validate(item))
            if isinstance(item, dict) and "scan_metadata" in item
            else HistoricalScan.model_validate(item)
            for item in data
        ]
    except ValidationError as exc:
        raise ConfigurationError(
            message="Invalid historical scan record",
            error_code="invalid_history",
            details={"path": path, "errors": exc.errors(include_url=False)},
        ) from exc


def _print_model(model: BaseModel) -> None:
    print(model.model_dump_json(indent=2))


def _run(args: argparse.Namespace) -> int:
    if args.command == "normalize":
        _print_model(_load_scan(args))
        return EXIT_OK

    if args.command == "detect-version":
        print(detect_schema_version(_read_json(args.payload, "payload")))
        return EXIT_OK

    if args.command == "evaluate":
        scan = _load_scan(args)
        policies, exceptions = _load_policies(args.policies)
        evaluation = PolicyEngine().evaluate(scan.vulnerabilities, policies, exceptions)
        _print_model(evaluation)
        return EXIT_OK if evaluation.allowed else EXIT_BLOCKED

    if args.command == "conditional":
        scan = _load_scan(args)
        history = _load_history(args.history)
        environment = Environment(args.environment) if args.environment else None
        result = ConditionalPolicyEvaluator().evaluate(scan, history, environment=environment)
        _print_model(result)
        return EXIT_OK if result.allowed else EXIT_BLOCKED

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as exc:
        print(json.dumps({"error": "invalid_settings", "message": str(exc), "details": None}), file=sys.stderr)
        return EXIT_ERROR

    configure_logging(level=args.log_level or settings.log_level, json_output=settings.log_json_output)

    try:
        return _run(args)
    except CertusException as exc:
        logger.error("cli.command_failed", command=args.command, error_code=exc.error_code)
        print(json.dumps(exc.to_dict(), default=str), file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
