"""Command-line entry point for RepoLens."""

import argparse
import logging
import sys

from agent import run_review
from config import load_settings
from errors import ConfigError
from report import print_review

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_INTERRUPTED = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="repolens",
        description="AI-assisted code review of a whole repository.",
        epilog="""
Examples:
  repolens --repository ../my-service
  repolens --provider google --service gemini-flash --language German
  USE_MOCK=true repolens --repository .
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--settings", help="Path to a settings JSON file")
    parser.add_argument("--repository", help="Repository to review")
    parser.add_argument("--provider", help="Provider name from the settings file")
    parser.add_argument("--service", help="Service (model) name of that provider")
    parser.add_argument("--output", help="Directory for the JSON report")
    parser.add_argument("--workers", type=int, help="Concurrent file reviews")
    parser.add_argument("--timeout", type=float, help="Run timeout in seconds")
    parser.add_argument("--language", help="Natural language for the report")
    parser.add_argument(
        "--review-type",
        choices=["general", "security"],
        help="Which review prompt to use",
    )
    parser.add_argument(
        "--no-summary-print",
        action="store_true",
        help="Do not print the console summary",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def _overrides(args: argparse.Namespace) -> dict:
    return {
        "repository_path": args.repository,
        "active_provider": args.provider,
        "active_service": args.service,
        "report_output_path": args.output,
        "max_workers": args.workers,
        "run_timeout": args.timeout,
        "target_language": args.language,
        "review_type": args.review_type,
    }


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        settings = load_settings(args.settings, _overrides(args))
        final_state = run_review(settings)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return EXIT_CONFIG_ERROR

    review = final_state["report"]
    if not args.no_summary_print:
        print_review(review)

    if review.interrupted:
        logger.error("Run interrupted; partial report at %s", final_state.get("report_path"))
        return EXIT_INTERRUPTED
    return EXIT_OK


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
