"""Data models for file and repository reviews."""

from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field


class RAGStatus(str, Enum):
    """Traffic-light health status."""

    GREEN = "Green"
    AMBER = "Amber"
    RED = "Red"

    @property
    def rank(self) -> int:
        return _RAG_RANK[self]


_RAG_RANK: dict[RAGStatus, int] = {
    RAGStatus.GREEN: 0,
    RAGStatus.AMBER: 1,
    RAGStatus.RED: 2,
}


class Severity(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


# =============================================================================
# FINDINGS
# =============================================================================
class SecurityIssue(BaseModel):
    """A single security finding."""

    model_config = ConfigDict(frozen=True)

    severity: Severity = Field(description="Low, Medium, High, Critical")
    code: str = Field(default="", description="Offending code snippet")
    threat: str = Field(default="", description="What an attacker could do")
    mitigation: str = Field(default="", description="How to fix it")


class CodeError(BaseModel):
    """A definite bug or defect."""

    model_config = ConfigDict(frozen=True)

    code: str = Field(default="general", description="Offending code snippet")
    issue: str = Field(default="", description="What is wrong")
    resolution: str = Field(default="", description="How to fix it")


class Improvement(BaseModel):
    """A best-practice suggestion."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    code: str = Field(default="", description="Code the suggestion applies to")
    suggestion: str = Field(default="", description="What to change")
    improvement_details: str = Field(
        default="",
        validation_alias=AliasChoices("improvement_details", "example"),
        description="Example or further detail",
    )


# =============================================================================
# SOURCE METADATA
# =============================================================================
class Statistics(BaseModel):
    size: int = 0  # bytes
    loc: int = 0
    num_files: int = 0
    num_commits: int = 0
    frequency: float = 0.0  # percentage of repository commits


class LanguageType(BaseModel):
    name: str
    extension: str = ""
    statistics: Statistics = Field(default_factory=Statistics)


class SourceFileInfo(BaseModel):
    """Identity of a reviewed file. Always taken from the local scan."""

    model_config = ConfigDict(frozen=True)

    name: str
    relative_path: str
    language: LanguageType
    id_hash: str = Field(description="SHA-256 of the file content")
    statistics: Statistics = Field(default_factory=Statistics)


class Contributor(BaseModel):
    name: str
    num_commits: int = 0
    last_contribution: str = ""  # ISO-8601
    percentage: float = 0.0


class FailedFile(BaseModel):
    """A file excluded from the report, with the reason it was dropped."""

    path: str
    reason: str


# =============================================================================
# REVIEWS
# =============================================================================
class FileReview(BaseModel):
    """Validated review for one file. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    source_file_info: SourceFileInfo
    summary: str
    file_rag_status: RAGStatus
    security_issues: list[SecurityIssue] = Field(default_factory=list)
    errors: list[CodeError] = Field(default_factory=list)
    improvements: list[Improvement] = Field(default_factory=list)
    degraded: bool = Field(
        default=False,
        description="True when the review was repaired or synthesised locally",
    )


class RepositoryReview(BaseModel):
    """Complete review of a repository.

    RAG status, severity counts and the degraded count are computed from
    ``file_reviews`` on every read.
    """

    repository_name: str
    date: str
    provider: str = ""
    service: str = ""
    model: str = ""
    repository_type: str = ""
    summary: str = ""
    statistics: Statistics = Field(default_factory=Statistics)
    language_types: list[LanguageType] = Field(default_factory=list)
    contributors: list[Contributor] = Field(default_factory=list)
    file_reviews: list[FileReview] = Field(default_factory=list)
    failed_files: list[FailedFile] = Field(default_factory=list)
    interrupted: str | None = Field(
        default=None, description="Why the run stopped early, if it did"
    )

    @computed_field
    @property
    def repository_rag_status(self) -> RAGStatus:
        worst = RAGStatus.GREEN
        for review in self.file_reviews:
            if review.file_rag_status.rank > worst.rank:
                worst = review.file_rag_status
        return worst

    @computed_field
    @property
    def severity_counts(self) -> dict[str, int]:
        counts = {severity.value: 0 for severity in Severity}
        for review in self.file_reviews:
            for issue in review.security_issues:
                counts[issue.severity.value] += 1
        return counts

    @computed_field
    @property
    def degraded_count(self) -> int:
        return sum(1 for review in self.file_reviews if review.degraded)


# ---------------------------------------------------------------------------
# RAG calculation
# ---------------------------------------------------------------------------
DEFAULT_GREEN_IMPROVEMENT_THRESHOLD = 10


def calculate_file_rag_status(
    security_issues: list[SecurityIssue],
    errors: list[CodeError],
    improvements: list[Improvement],
    green_threshold: int = DEFAULT_GREEN_IMPROVEMENT_THRESHOLD,
) -> RAGStatus:
    """Derive a file's RAG status from its findings.

    Any High or Critical security issue is Red. No security issues, no errors
    and fewer than *green_threshold* improvements is Green. Anything else is
    Amber.
    """
    if any(i.severity in (Severity.HIGH, Severity.CRITICAL) for i in security_issues):
        return RAGStatus.RED
    if not security_issues and not errors and len(improvements) < green_threshold:
        return RAGStatus.GREEN
    return RAGStatus.AMBER
