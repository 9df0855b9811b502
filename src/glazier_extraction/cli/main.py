from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any, Dict, Sequence

from ..config import MODEL_ALIASES, MODEL_PRICING, ConfigurationError
from ..logging import get_logger, set_verbose
from ..paths import expand_abs, expand_input_patterns
from ..pipeline import ExtractionFlow, ProjectInfo, build_flow_config, reaggregate_reports

LOG = get_logger("cli-main")


def _write_report(report: Dict[str, Any], output: str | None) -> None:
    text = json.dumps(report, ensure_ascii=False, indent=2)
    if output:
        path = expand_abs(output)
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(text + "\n")
        LOG.info(f"Results written to: {path}")
    else:
        print(text)


def _add_run_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("inputs", nargs="*", help="PDF files or glob patterns")
    p.add_argument("--files", action="append", default=[], help="Comma-separated PDF files or glob patterns")
    p.add_argument("-o", "--output", help="Output JSON file (default: stdout)")
    p.add_argument("-v", "--verbose", action="store_true", help="Show per-file and per-page progress")
    p.add_argument("--dpi", type=int, default=150, help="Image resolution for rasterization (default: 150)")
    p.add_argument("-m", "--model", help="Model id or alias (default: OPENROUTER_MODEL or google/gemini-2.5-flash)")
    p.add_argument("--price-in", type=float, help="USD per million input tokens (overrides pricing table)")
    p.add_argument("--price-out", type=float, help="USD per million output tokens (overrides pricing table)")
    p.add_argument("--project-name", help="Project name recorded in the report")
    p.add_argument("--project-number", help="Project number recorded in the report")
    p.add_argument("--save-responses", metavar="DIR", help="Archive raw page replies under DIR")


def _handle_run(ns: argparse.Namespace) -> int:
    set_verbose(ns.verbose)
    files = expand_input_patterns(list(ns.inputs) + list(ns.files))
    if not files:
        LOG.error("No PDF files specified. Pass paths or use --files.")
        return 2

    # Read .env from the current working directory upwards
    script_dir = os.getcwd()
    try:
        config = build_flow_config(ns, script_dir=script_dir)
        flow = ExtractionFlow(config)
        result = flow.run(files)
    except ConfigurationError as exc:
        LOG.error(f"Configuration error: {exc}")
        return 1

    _write_report(result.as_dict(), ns.output)
    return 0


def _handle_aggregate(ns: argparse.Namespace) -> int:
    set_verbose(ns.verbose)
    paths = expand_input_patterns(ns.reports)
    if not paths:
        LOG.error("No report files found.")
        return 2
    reports = []
    for path in paths:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            LOG.error(f"Cannot read report {path}: {exc}")
            return 1
        if not isinstance(data, dict):
            LOG.error(f"Report {path} is not a JSON object")
            return 1
        reports.append(data)

    project = ProjectInfo(name=ns.project_name, number=ns.project_number)
    if project.name is None:
        first = reports[0].get("project") or {}
        project = ProjectInfo(name=first.get("name"), number=ns.project_number or first.get("number"))
    result = reaggregate_reports(reports, project)
    _write_report(result.as_dict(), ns.output)
    return 0


def _handle_models(_: argparse.Namespace) -> int:
    aliases = {target: alias for alias, target in MODEL_ALIASES.items()}
    for model, (price_in, price_out) in MODEL_PRICING.items():
        alias = aliases.get(model, "")
        print(f"{model:<28} {alias:<14} ${price_in:.2f}/M in  ${price_out:.2f}/M out")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]

    parser = argparse.ArgumentParser(
        prog="glazier-extract",
        description="Extract glazier items from construction PDFs with a vision model.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser(
        "run",
        help="Rasterize PDFs, extract items page by page, and write the JSON report.",
    )
    _add_run_args(run)
    run.set_defaults(handler=_handle_run)

    agg = subparsers.add_parser(
        "aggregate",
        help="Re-deduplicate and merge the items of existing reports.",
    )
    agg.add_argument("reports", nargs="+", help="Report JSON files or glob patterns")
    agg.add_argument("-o", "--output", help="Output JSON file (default: stdout)")
    agg.add_argument("-v", "--verbose", action="store_true")
    agg.add_argument("--project-name")
    agg.add_argument("--project-number")
    agg.set_defaults(handler=_handle_aggregate)

    models = subparsers.add_parser("models", help="List known models and their pricing.")
    models.set_defaults(handler=_handle_models)

    args = parser.parse_args(provided)
    code = args.handler(args)
    LOG.info(f"Subcommand '{args.command}' finished with exit code {code}.")
    return code


if __name__ == "__main__":
    sys.exit(main())
