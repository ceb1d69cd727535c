"""
RepoLens Agent - LangGraph-based repository review workflow

This module implements a review run as a state machine using LangGraph.
The repository's git history is mined, reviewable files are collected, each
file is reviewed on a bounded worker pool, and the results are rolled up into
one report. An executive summary is requested only when there is something
to summarise.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from langgraph.graph import END, START, StateGraph

import config as _config  # noqa: F401 (initialises env & logging)
from aggregator import Aggregator
from config import Settings
from errors import ConfigError, RunCancelled
from git_miner import GitHistory, mine_history
from models import RepositoryReview
from prompts import REVIEW_TEMPLATE_IDS, build_prompt
from providers import ReviewProvider, create_provider
from report import write_json_report
from retry import RetryPolicy
from reviewer import FileReviewer
from scanner import SourceFile, walk_repository
from scheduler import ReviewScheduler

logger = logging.getLogger(__name__)


# =============================================================================
# STATE DEFINITION
# =============================================================================
@dataclass
class RunState:
    """
    State that flows through the run graph.

    Each node can read any field and return updates to specific fields.
    LangGraph automatically merges the updates into the state.
    """

    # Input (required)
    settings: Settings

    # Optional injection (tests, embedding callers)
    provider: ReviewProvider | None = None
    save_report: bool = True

    # Intermediate data (populated by nodes)
    repository_name: str = ""
    retry_policy: RetryPolicy | None = None
    aggregator: Aggregator | None = None
    history: GitHistory | None = None
    files: list[SourceFile] = field(default_factory=list)
    interrupted: str | None = None  # Why the review stopped early, if it did
    summary: str = ""

    # Output
    report: RepositoryReview | None = None
    report_path: str | None = None


# =============================================================================
# NODE FUNCTIONS
# =============================================================================
def prepare_run(state: RunState) -> dict:
    """
    Node 1: Validate settings and build the provider.

    Reads: settings, provider
    Updates: provider, retry_policy, aggregator, repository_name

    Configuration problems raise ``ConfigError`` and end the run before any
    file is scheduled.
    """
    settings = state.settings
    root = Path(settings.repository_path).resolve()
    if not root.is_dir():
        raise ConfigError(f"Repository path {root} is not a directory")

    template_id = REVIEW_TEMPLATE_IDS[settings.review_type]
    # Surfaces template problems now rather than once per file
    build_prompt(
        template_id,
        target_language=settings.target_language,
        green_threshold=settings.green_improvement_threshold,
    )

    provider = state.provider or create_provider(settings)
    policy = RetryPolicy(
        max_retries=provider.config.max_retries,
        base_delay=settings.base_retry_delay,
        max_delay=settings.max_retry_delay,
    )

    logger.info("🤖 Reviewing %s with %s (%s)", root.name, provider.name, provider.model)

    return {
        "provider": provider,
        "retry_policy": policy,
        "repository_name": root.name,
        "aggregator": Aggregator(
            root.name,
            provider=provider.name,
            service=provider.service.name,
            model=provider.model,
        ),
    }


def mine_git_history(state: RunState) -> dict:
    """
    Node 2: Commit count, contributors and per-file change counts.

    Reads: settings, aggregator
    Updates: history
    """
    logger.info("📜 Mining git history...")
    history = mine_history(state.settings.repository_path)
    state.aggregator.apply_history(history)
    return {"history": history}


def scan_repository(state: RunState) -> dict:
    """
    Node 3: Collect reviewable files.

    Reads: settings
    Updates: files
    """
    logger.info("📂 Scanning %s...", state.settings.repository_path)
    files = list(
        walk_repository(state.settings.repository_path, state.settings.max_file_bytes)
    )
    logger.info("   Found %d file(s) to review", len(files))
    return {"files": files}


def review_files(state: RunState) -> dict:
    """
    Node 4: Review every file on the worker pool.

    Reads: files, provider, retry_policy, history, aggregator
    Updates: interrupted

    Outcomes go straight into the aggregator as they complete, so a timeout
    or cancellation still leaves every finished review in the report.
    """
    settings = state.settings
    reviewer = FileReviewer(
        state.provider,
        state.retry_policy,
        template_id=REVIEW_TEMPLATE_IDS[settings.review_type],
        green_threshold=settings.green_improvement_threshold,
        history=state.history,
    )
    scheduler = ReviewScheduler(
        reviewer,
        max_workers=settings.max_workers,
        run_timeout=settings.run_timeout,
        on_complete=state.aggregator.add_outcome,
    )

    try:
        scheduler.run(state.files)
    except RunCancelled as e:
        logger.error("   ❌ %s", e)
        return {"interrupted": str(e)}

    return {"interrupted": None}


def summarise_repository(state: RunState) -> dict:
    """
    Node 5: Executive summary over all file summaries.

    Reads: provider, retry_policy, aggregator
    Updates: summary
    """
    logger.info("📝 Writing executive summary...")
    summary = state.aggregator.summarise(
        state.provider,
        state.retry_policy,
        max_words=state.settings.summary_max_words,
    )
    return {"summary": summary}


def finish_report(state: RunState) -> dict:
    """
    Node 6: Finalise the report and write it to disk.

    Reads: aggregator, interrupted, settings
    Updates: report, report_path
    """
    report = state.aggregator.finalize(interrupted=state.interrupted)
    report_path = None
    if state.save_report:
        report_path = str(
            write_json_report(report, state.settings.report_output_path)
        )

    if state.provider is not None:
        state.provider.close()

    logger.info(
        "   %s: %d file(s), %d degraded, %d failed",
        report.repository_rag_status.value,
        len(report.file_reviews),
        report.degraded_count,
        len(report.failed_files),
    )
    return {"report": report, "report_path": report_path}


# =============================================================================
# DECISION FUNCTIONS (for conditional edges)
# =============================================================================
def should_summarise(state: RunState) -> str:
    """
    Decide whether to ask for an executive summary.

    Returns:
        "summarise" if at least one file was reviewed and the run finished
        "skip" otherwise
    """
    if isinstance(state, dict):
        aggregator = state.get("aggregator")
        interrupted = state.get("interrupted")
    else:
        aggregator, interrupted = state.aggregator, state.interrupted

    if interrupted:
        logger.info("🔀 Decision: run interrupted → skipping summary")
        return "skip"
    if aggregator is None or not aggregator.review.file_reviews:
        logger.info("🔀 Decision: nothing reviewed → skipping summary")
        return "skip"
    return "summarise"


# =============================================================================
# GRAPH CONSTRUCTION
# =============================================================================
def build_run_graph() -> StateGraph:
    """Build the review run workflow graph."""
    graph = StateGraph(RunState)

    graph.add_node("prepare_run", prepare_run)
    graph.add_node("mine_history", mine_git_history)
    graph.add_node("scan_repository", scan_repository)
    graph.add_node("review_files", review_files)
    graph.add_node("summarise_repository", summarise_repository)
    graph.add_node("write_report", finish_report)

    graph.add_edge(START, "prepare_run")
    graph.add_edge("prepare_run", "mine_history")
    graph.add_edge("mine_history", "scan_repository")
    graph.add_edge("scan_repository", "review_files")

    graph.add_conditional_edges(
        "review_files",
        should_summarise,
        {
            "summarise": "summarise_repository",
            "skip": "write_report",
        },
    )

    graph.add_edge("summarise_repository", "write_report")
    graph.add_edge("write_report", END)

    return graph


def create_agent():
    """Create and compile the run agent."""
    return build_run_graph().compile()


def run_review(
    settings: Settings,
    provider: ReviewProvider | None = None,
    save_report: bool = True,
) -> dict:
    """Run a full review and return the final graph state as a dict.

    Raises:
        ConfigError: the run could not start.
    """
    agent = create_agent()
    return agent.invoke(
        RunState(settings=settings, provider=provider, save_report=save_report)
    )


# =============================================================================
# MAIN
# =============================================================================
if __name__ == "__main__":
    from config import load_settings
    from report import print_review

    final_state = run_review(load_settings())
    print_review(final_state["report"])
