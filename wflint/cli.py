"""
cli.py - Command-line interface for wflint

This module provides the command-line interface for the wflint tool,
allowing users to lint GitHub Actions workflow files.
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, NoReturn, Optional, Tuple, cast

import click

from .core import (
    RULE_IDS,
    ConfigurationError,
    LintResult,
    disable_rules,
    generate_default_config,
    lint_file,
    load_config,
    summarize,
)
from .reports import format_console_report, generate_json_report
from .rules import Capability, list_rules
from .utils.version import __version__
from .utils.yaml_handler import find_github_workflow_files, find_yaml_files

OUTPUT_FORMATS = ["text", "json"]

EXIT_CLEAN = 0
EXIT_FINDINGS = 1
EXIT_ERROR = 2

SEVERITY_COLORS = {
    "LOW": "blue",
    "MEDIUM": "yellow",
    "HIGH": "red",
    "CRITICAL": "bright_red",
}

logger = logging.getLogger(__name__)


def _fail(message: str) -> NoReturn:
    click.echo(f"Error: {message}", err=True)
    sys.exit(EXIT_ERROR)


def _collect_files(paths: Tuple[str, ...]) -> List[Path]:
    """
    Resolve command-line paths to workflow files

    Args:
        paths: Files or directories; directories are searched for
            .github/workflows first and for YAML files directly otherwise

    Returns:
        Workflow files in command-line order without duplicates
    """
    files: List[Path] = []
    for raw in paths or (".",):
        path = Path(raw)
        if path.is_file():
            found = [path]
        elif path.is_dir():
            found = find_github_workflow_files(str(path)) or find_yaml_files(str(path), recursive=False)
        else:
            _fail(f"{raw} does not exist")
        logger.debug("%s: %d workflow file(s)", raw, len(found))
        for item in found:
            if item not in files:
                files.append(item)
    return files


def _prepare_config(
    config: Optional[str], disable: Tuple[str, ...], only: Tuple[str, ...]
) -> Tuple[Dict[str, Any], Optional[List[str]]]:
    """Load configuration and apply the rule switches given on the command line"""
    try:
        config_data = load_config(config)
        if disable:
            config_data = disable_rules(config_data, list(disable))
    except ConfigurationError as e:
        _fail(str(e))

    selection: Optional[List[str]] = None
    if only:
        unknown = [rule for rule in only if rule not in RULE_IDS]
        if unknown:
            _fail(f"Unknown rule(s): {', '.join(unknown)}")
        selection = list(only)
    return config_data, selection


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """wflint - static analysis for GitHub Actions workflows

    Reports structural mistakes and CI/CD security weaknesses such as script
    injection, secret exposure, untrusted checkouts and cache poisoning.
    """


@cli.command()
@click.argument("paths", nargs=-1, type=click.Path())
@click.option(
    "--format",
    "output_format",
    type=click.Choice(OUTPUT_FORMATS),
    default="text",
    help="Output format for results",
)
@click.option("--config", type=click.Path(), help="Path to YAML config file")
@click.option("--disable", multiple=True, help="Disable specific rule(s)")
@click.option("--only", multiple=True, help="Run only the given rule(s)")
@click.option("--network", is_flag=True, help="Allow rules that need network access")
@click.option("--output-file", type=click.Path(), help="Write output to file instead of stdout")
@click.option("--no-color", is_flag=True, help="Disable colored output")
@click.option("--verbose", is_flag=True, help="Log progress to stderr")
def lint(
    paths: Tuple[str, ...],
    output_format: str,
    config: Optional[str],
    disable: Tuple[str, ...],
    only: Tuple[str, ...],
    network: bool,
    output_file: Optional[str],
    no_color: bool,
    verbose: bool,
) -> None:
    """Lint workflow files

    PATHS: Workflow files, or repositories/directories to search
    (defaults to the current directory)
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    config_data, selection = _prepare_config(config, disable, only)
    files = _collect_files(paths)
    if not files:
        _fail("no workflow files found")

    capabilities = [Capability.FILESYSTEM]
    if network:
        capabilities.append(Capability.NETWORK)

    results: List[LintResult] = []
    for path in files:
        try:
            results.append(lint_file(path, selection, config_data, capabilities))
        except OSError as e:
            _fail(f"cannot read {path}: {e}")

    summary = summarize(results)
    report_options = cast(Dict[str, Any], config_data.get("report", {}))

    if output_format == "json":
        output = generate_json_report(results) + "\n"
    else:
        remediations = None
        if report_options.get("include_remediation", True):
            remediations = {rule["id"]: rule["remediation"] for rule in list_rules()}
        color = not no_color and not output_file and report_options.get("color_output", True)
        output = format_console_report(
            results, summary, remediations, report_options.get("summary", True), color=color
        )

    if output_file:
        try:
            with open(output_file, "w", encoding="utf-8") as f:
                f.write(output)
        except OSError as e:
            _fail(f"cannot write {output_file}: {e}")
        click.echo(f"Results written to {output_file}")
    else:
        click.echo(output, nl=False)

    sys.exit(EXIT_CLEAN if all(result.success for result in results) else EXIT_FINDINGS)


@cli.command()
@click.option("--config", type=click.Path(exists=True), help="Path to YAML config file to validate")
@click.option("--generate", is_flag=True, help="Generate a default config file")
@click.option("--output", type=click.Path(), help="Output path for generated config")
def config(config: Optional[str], generate: bool, output: Optional[str]) -> None:
    """View or validate current config"""
    if generate:
        try:
            config_str = generate_default_config(output_path=output)
        except ConfigurationError as e:
            _fail(str(e))

        if output:
            click.echo(f"Default config written to {output}")
        else:
            click.echo(config_str)
        return

    try:
        config_data = load_config(config)
    except ConfigurationError as e:
        click.echo(f"Config validation failed: {e}", err=True)
        sys.exit(EXIT_ERROR)

    click.echo("Config loaded and valid.")
    thresholds = config_data.get("severity_thresholds") or {}
    for rule_info in list_rules():
        rule_id = rule_info["id"]
        severity = thresholds.get(rule_id, rule_info["severity"])
        severity = getattr(severity, "value", severity)
        enabled = config_data.get(rule_id, True)
        click.echo(f" - {rule_id}: {'enabled' if enabled else 'disabled'} [{severity}]")


@cli.command()
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
def rules(output_format: str) -> None:
    """List all available rules and what they do"""

    rules_list = list_rules()

    if output_format == "json":
        click.echo(json.dumps(rules_list, indent=2))
        return

    click.echo("wflint supports the following rules:")

    by_category: Dict[str, List[Dict[str, Any]]] = {}
    for rule in rules_list:
        by_category.setdefault(cast(str, rule.get("category", "other")), []).append(rule)

    for category, category_rules in by_category.items():
        click.echo(f"\n{category.upper()}:")
        for rule in category_rules:
            severity_text = f"[{rule['severity']}]"
            if not os.environ.get("NO_COLOR"):
                severity_text = click.style(severity_text, fg=SEVERITY_COLORS.get(rule["severity"], "white"))
            click.echo(f" - {rule['id']}: {severity_text}")
            click.echo(f"   {rule['description']}")


def main() -> None:
    """Main entry point for the wflint CLI tool"""
    cli()


if __name__ == "__main__":
    main()
