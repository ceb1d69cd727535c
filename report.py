"""JSON report output and console summary."""

import logging
import re
from datetime import datetime
from pathlib import Path

from models import RAGStatus, RepositoryReview

logger = logging.getLogger(__name__)

_RAG_ICONS = {
    RAGStatus.GREEN: "🟢",
    RAGStatus.AMBER: "🟠",
    RAGStatus.RED: "🔴",
}


def report_filename(repository_name: str, when: datetime | None = None) -> str:
    """``<repository>_<YYYYmmdd_HHMMSS>.json`` with unsafe characters replaced."""
    when = when or datetime.now()
    safe_name = re.sub(r"[^\w.-]", "_", repository_name) or "repository"
    return f"{safe_name}_{when.strftime('%Y%m%d_%H%M%S')}.json"


def write_json_report(
    review: RepositoryReview,
    output_dir: str | Path,
    when: datetime | None = None,
) -> Path:
    """Write *review* as indented JSON and return the file path."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / report_filename(review.repository_name, when)
    path.write_text(review.model_dump_json(indent=2), encoding="utf-8")
    logger.info("📄 Report written to %s", path)
    return path


def print_review(review: RepositoryReview) -> None:
    """Pretty print a repository review."""
    status = review.repository_rag_status
    print(f"\n{'=' * 60}")
    print(f"📋 REPOSITORY REVIEW: {review.repository_name}")
    print(f"{'=' * 60}")
    print(f"Provider: {review.provider} / {review.service} ({review.model})")
    print(f"Predominant language: {review.repository_type or 'n/a'}")
    print(
        f"Files reviewed: {review.statistics.num_files} "
        f"({review.statistics.loc} LOC, {review.statistics.num_commits} commits)"
    )
    print(f"Status: {_RAG_ICONS[status]} {status.value}")

    counts = ", ".join(f"{name}: {n}" for name, n in review.severity_counts.items())
    print(f"Security issues by severity: {counts}")

    if review.summary:
        print(f"\n{review.summary}")

    for file_review in review.file_reviews:
        info = file_review.source_file_info
        marker = " (degraded)" if file_review.degraded else ""
        print(
            f"  {_RAG_ICONS[file_review.file_rag_status]} {info.relative_path}{marker}: "
            f"{len(file_review.security_issues)} security, "
            f"{len(file_review.errors)} error(s), "
            f"{len(file_review.improvements)} improvement(s)"
        )

    for failed in review.failed_files:
        print(f"  ⏭️  {failed.path}: {failed.reason}")

    print(f"\n{'=' * 60}")
    print(
        f"Review complete: {len(review.file_reviews)} file(s), "
        f"{review.degraded_count} degraded, {len(review.failed_files)} failed"
    )
    if review.interrupted:
        print(f"⚠️  Partial report: {review.interrupted}")
    print(f"{'=' * 60}\n")
