"""
Command-line interface for comet-monkey.

Connects to an owl-browser instance, exercises one page with the
interaction engine, runs the enabled audits and prints the page report
as JSON.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any

import structlog
from dotenv import load_dotenv

AUDIT_CHOICES = ["accessibility", "performance", "security"]


def configure_logging(verbose: bool = False, debug: bool = False) -> None:
    """Configure structlog for CLI output."""
    import logging

    log_level = "DEBUG" if debug else "INFO" if verbose else "WARNING"

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, log_level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog="comet-monkey",
        description="comet-monkey - Autonomous interaction and audit engine for web pages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  comet-monkey https://example.com
  comet-monkey https://example.com --max-interactions 20 --interaction-delay 500
  comet-monkey https://example.com --audits security accessibility --output report.json
  comet-monkey https://example.com --screenshot page.png

Environment:
  OWL_BROWSER_URL     Remote owl-browser endpoint
  OWL_BROWSER_TOKEN   Remote owl-browser token
  INTERACTION_DELAY   Delay between interactions (ms)
  MAX_INTERACTIONS    Interaction budget
  TIMEOUT             Navigation timeout (ms)

Exit codes:
  0  no violations
  1  violations found, or the run failed
  2  critical security violations found
""",
    )

    parser.add_argument(
        "target",
        help="Page URL to exercise (must include http:// or https://)",
    )

    parser.add_argument(
        "--max-interactions",
        type=int,
        default=None,
        dest="max_interactions",
        help="Maximum number of element interactions (default: 10)",
    )

    parser.add_argument(
        "--interaction-delay",
        type=int,
        default=None,
        dest="interaction_delay",
        help="Delay between interactions in milliseconds (default: 300)",
    )

    parser.add_argument(
        "-t", "--timeout",
        type=int,
        default=None,
        help="Navigation timeout in milliseconds (default: 30000)",
    )

    parser.add_argument(
        "--audits",
        nargs="+",
        choices=AUDIT_CHOICES,
        default=None,
        help="Audits to run after interaction (default: all)",
    )

    parser.add_argument(
        "--screenshot",
        default=None,
        help="Save a full-page screenshot to this path",
    )

    parser.add_argument(
        "-o", "--output",
        default=None,
        help="Output file path for the JSON report (default: stdout)",
    )

    parser.add_argument(
        "--no-verify-ssl",
        action="store_true",
        help="Disable TLS verification for out-of-band requests",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug output",
    )

    parser.add_argument(
        "--version",
        action="version",
        version="comet-monkey 1.0.0",
    )

    return parser


def build_options(args: argparse.Namespace) -> tuple[Any, Any]:
    """
    Build interaction and audit options.

    Command-line flags override environment variables, which override
    defaults.
    """
    from cometmonkey.models import AuditOptions, AuditType, InteractionOptions

    values = InteractionOptions.from_env().model_dump()
    for key in ("interaction_delay", "max_interactions", "timeout"):
        value = getattr(args, key, None)
        if value is not None:
            values[key] = value
    interaction_options = InteractionOptions.model_validate(values)

    enabled = set(AuditType)
    if args.audits:
        enabled = {AuditType(a) for a in args.audits}
    audit_options = AuditOptions(enabled_audits=enabled, verify_ssl=not args.no_verify_ssl)
    return interaction_options, audit_options


def exit_code_for(report: Any) -> int:
    """0 without violations, 2 with a critical security violation, 1 otherwise."""
    from cometmonkey.models import AuditType, Severity

    security = report.audits.get(AuditType.SECURITY)
    if security and any(f.severity == Severity.CRITICAL for f in security.violations):
        return 2
    if any(result.violations for result in report.audits.values()):
        return 1
    return 0


def _get_browser_instance() -> Any:
    """
    Create an OwlBrowser connected to the remote instance from the environment.

    Raises:
        ValueError: If OWL_BROWSER_URL or OWL_BROWSER_TOKEN is not set
    """
    from owl_browser import OwlBrowser, RemoteConfig

    remote_url = os.getenv("OWL_BROWSER_URL")
    remote_token = os.getenv("OWL_BROWSER_TOKEN")
    if not remote_url or not remote_token:
        raise ValueError("OWL_BROWSER_URL and OWL_BROWSER_TOKEN must be set")

    structlog.get_logger(__name__).info("using_remote_browser", remote_url=remote_url)
    return OwlBrowser(RemoteConfig(url=remote_url, token=remote_token))


async def run_page(args: argparse.Namespace) -> int:
    """
    Execute one page run.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code
    """
    from cometmonkey.orchestrator import PageOrchestrator

    logger = structlog.get_logger(__name__)

    try:
        interaction_options, audit_options = build_options(args)
    except ValueError as e:
        logger.error("configuration_error", error=str(e))
        return 1

    logger.info(
        "run_starting",
        target=args.target,
        max_interactions=interaction_options.max_interactions,
        audits=sorted(a.value for a in audit_options.enabled_audits),
    )

    async with _get_browser_instance() as browser:
        orchestrator = PageOrchestrator(browser, interaction_options, audit_options)
        report = await orchestrator.run_page(args.target, screenshot_path=args.screenshot)

    output = json.dumps(report.model_dump(mode="json"), indent=2)
    if args.output:
        output_path = Path(args.output)
        output_path.write_text(output)
        logger.info("report_saved", path=str(output_path.absolute()))
    else:
        print(output)

    logger.info(
        "run_summary",
        interactions=report.interaction.interactions_performed,
        errors=len(report.interaction.errors),
        scores={audit.value: score for audit, score in report.scores.items()},
        duration=f"{report.duration_seconds:.2f}s",
    )
    return exit_code_for(report)


def main() -> None:
    """Main entry point for CLI."""
    load_dotenv()

    parser = create_parser()
    args = parser.parse_args()

    configure_logging(verbose=args.verbose, debug=args.debug)

    try:
        exit_code = asyncio.run(run_page(args))
        sys.exit(exit_code)
    except KeyboardInterrupt:
        print("\nRun interrupted by user", file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        logger = structlog.get_logger(__name__)
        logger.error("fatal_error", error=str(e))
        if args.debug:
            raise
        sys.exit(1)


if __name__ == "__main__":
    main()
