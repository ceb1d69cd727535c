"""End-to-end runs of the review graph with a scripted provider."""

import json

import pytest

import config
import main
from agent import create_agent, run_review, should_summarise
from errors import ConfigError, Unauthorized
from models import RAGStatus
from tests.helpers import (
    ScriptedProvider,
    code_error,
    improvement,
    make_settings,
    review_json,
    security_issue,
)


def _repository(root):
    files = {
        "src/auth.py": "import os\nquery = 'SELECT ' + os.environ['USER']\n",
        "src/stats.py": "def mean(xs):\n    return sum(xs) / len(xs)\n",
        "src/clean.py": "VERSION = '1.0'\n",
        "src/verbose.py": "def f(a, b, c):\n    return a\n",
        "web/app.js": "export const x = 1;\n",
        "README.md": "# Demo\n",
    }
    for relative_path, text in files.items():
        path = root / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    return root


@pytest.fixture
def repository(tmp_path):
    return _repository(tmp_path / "demo")


def _settings(tmp_path, repository, **overrides):
    return make_settings(
        tmp_path,
        repository_path=str(repository),
        report_output_path=str(tmp_path / "reports"),
        **overrides,
    )


class TestReviewRun:
    """Full runs through the graph."""

    def test_mixed_repository(self, tmp_path, repository):
        provider = ScriptedProvider(
            {
                "src/auth.py": review_json(
                    "src/auth.py",
                    security_issues=[security_issue("Critical"), security_issue("Medium")],
                ),
                "src/stats.py": review_json("src/stats.py", errors=[code_error()]),
                "src/clean.py": review_json("src/clean.py", improvements=[improvement()]),
                "src/verbose.py": review_json(
                    "src/verbose.py", improvements=[improvement() for _ in range(12)]
                ),
                # Truncated mid-object: repaired, kept, flagged
                "web/app.js": review_json("web/app.js", errors=[code_error()])[:-30],
            },
            summary="Critical injection risk in auth; otherwise minor issues.",
        )

        final_state = run_review(_settings(tmp_path, repository), provider=provider)

        report = final_state["report"]
        statuses = {
            r.source_file_info.relative_path: r.file_rag_status for r in report.file_reviews
        }
        assert statuses == {
            "src/auth.py": RAGStatus.RED,
            "src/clean.py": RAGStatus.GREEN,
            "src/stats.py": RAGStatus.AMBER,
            "src/verbose.py": RAGStatus.AMBER,
            "web/app.js": RAGStatus.AMBER,
        }
        assert report.repository_rag_status is RAGStatus.RED
        assert report.severity_counts == {"Low": 0, "Medium": 1, "High": 0, "Critical": 1}
        assert report.degraded_count == 1
        assert report.failed_files == []
        assert report.repository_name == "demo"
        assert report.repository_type == "Python"
        assert report.statistics.num_files == 5
        assert report.summary == "Critical injection risk in auth; otherwise minor issues."
        assert report.interrupted is None
        assert provider.closed

        summary_calls = [c for c in provider.calls if c.template_id == "repository_summary"]
        assert len(summary_calls) == 1

        with open(final_state["report_path"], encoding="utf-8") as f:
            written = json.load(f)
        assert written["repository_rag_status"] == "Red"
        assert written["severity_counts"]["Critical"] == 1
        assert len(written["file_reviews"]) == 5

    def test_bad_credentials_still_produce_a_report(self, tmp_path, repository):
        provider = ScriptedProvider(default=Unauthorized("invalid API key"))

        final_state = run_review(_settings(tmp_path, repository), provider=provider)

        report = final_state["report"]
        assert len(report.file_reviews) == 5
        assert report.degraded_count == 5
        assert report.repository_rag_status is RAGStatus.AMBER
        # One attempt per file, terminal errors are not retried
        review_calls = [c for c in provider.calls if c.template_id == "general_review"]
        assert len(review_calls) == 5

    def test_summary_crash_still_writes_the_report(self, tmp_path, repository):
        provider = ScriptedProvider(summary=RuntimeError("unexpected stream shape"))

        final_state = run_review(_settings(tmp_path, repository), provider=provider)

        report = final_state["report"]
        assert report.summary == ""
        assert len(report.file_reviews) == 5
        assert final_state["report_path"] is not None
        assert provider.closed

    def test_security_review_type_uses_security_prompt(self, tmp_path, repository):
        provider = ScriptedProvider()

        run_review(
            _settings(tmp_path, repository, review_type="security"),
            provider=provider,
            save_report=False,
        )

        assert {c.template_id for c in provider.calls} == {
            "security_review",
            "repository_summary",
        }

    def test_timeout_yields_partial_report_without_summary(self, tmp_path, repository):
        provider = ScriptedProvider(delay=0.4)

        final_state = run_review(
            _settings(tmp_path, repository, max_workers=1, run_timeout=0.6),
            provider=provider,
        )

        report = final_state["report"]
        assert "timed out" in report.interrupted
        assert len(report.file_reviews) < 5
        assert final_state["report_path"] is not None
        assert not [c for c in provider.calls if c.template_id == "repository_summary"]

    def test_empty_repository_skips_summary(self, tmp_path):
        empty = tmp_path / "empty"
        empty.mkdir()
        provider = ScriptedProvider()

        final_state = run_review(_settings(tmp_path, empty), provider=provider, save_report=False)

        assert final_state["report"].file_reviews == []
        assert final_state["report"].repository_rag_status is RAGStatus.GREEN
        assert final_state["report_path"] is None
        assert provider.calls == []

    def test_missing_repository_is_a_config_error(self, tmp_path):
        with pytest.raises(ConfigError):
            run_review(_settings(tmp_path, tmp_path / "nope"), provider=ScriptedProvider())


class TestGraph:
    """Graph wiring and routing."""

    def test_compiles(self):
        assert create_agent() is not None

    def test_should_summarise_routes(self):
        assert should_summarise({"aggregator": None, "interrupted": None}) == "skip"
        assert should_summarise({"aggregator": None, "interrupted": "timeout"}) == "skip"


class TestCli:
    """Tests for main.main."""

    def test_mock_run_exits_ok(self, tmp_path, repository, monkeypatch, capsys):
        monkeypatch.setattr(config, "USE_MOCK", True)

        exit_code = main.main(
            ["--repository", str(repository), "--output", str(tmp_path / "out"), "--workers", "2"]
        )

        assert exit_code == main.EXIT_OK
        assert "REPOSITORY REVIEW: demo" in capsys.readouterr().out
        assert len(list((tmp_path / "out").glob("demo_*.json"))) == 1

    def test_config_error_exit_code(self, tmp_path):
        exit_code = main.main(["--settings", str(tmp_path / "missing.json")])
        assert exit_code == main.EXIT_CONFIG_ERROR
