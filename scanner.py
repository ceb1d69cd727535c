"""Repository file walker: which files to review, their language and size."""

import fnmatch
import hashlib
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

from errors import SchedulingError
from models import LanguageType, SourceFileInfo, Statistics

logger = logging.getLogger(__name__)


# =============================================================================
# FILTERS
# =============================================================================
SKIP_EXTENSIONS = {
    '.md', '.txt', '.rst', '.adoc',           # Docs
    '.lock',                                   # Lock files
    '.png', '.jpg', '.jpeg', '.gif', '.svg', '.ico', '.webp',  # Images
    '.woff', '.woff2', '.ttf', '.eot',        # Fonts
    '.csv', '.json', '.xml', '.yaml', '.yml', '.toml',  # Data
    '.min.js', '.min.css', '.map',            # Build artifacts
    '.exe', '.dll', '.so', '.dylib', '.pyc',  # Binary
    '.zip', '.tar', '.gz', '.pdf',            # Archives/docs
}

SKIP_FILENAMES = {
    'package-lock.json', 'yarn.lock', 'pnpm-lock.yaml',
    'Pipfile.lock', 'poetry.lock', 'composer.lock',
    'Gemfile.lock', 'Cargo.lock', 'uv.lock',
    '.gitignore', '.gitattributes', '.editorconfig',
    'LICENSE', 'LICENSE.md', 'LICENSE.txt',
}

SKIP_DIRECTORIES = {
    'node_modules', 'vendor', 'dist', 'build', 'target', '.git',
    '__pycache__', '.venv', 'venv', '.tox', '.mypy_cache', '.pytest_cache',
}

# Extension -> language name. Only these files are reviewed.
EXTENSION_LANGUAGES: dict[str, str] = {
    ".py": "Python",
    ".rs": "Rust",
    ".go": "Go",
    ".java": "Java",
    ".kt": "Kotlin",
    ".scala": "Scala",
    ".js": "JavaScript",
    ".jsx": "JavaScript",
    ".mjs": "JavaScript",
    ".ts": "TypeScript",
    ".tsx": "TypeScript",
    ".c": "C",
    ".h": "C",
    ".cc": "C++",
    ".cpp": "C++",
    ".hpp": "C++",
    ".cs": "C#",
    ".rb": "Ruby",
    ".php": "PHP",
    ".swift": "Swift",
    ".m": "Objective-C",
    ".sh": "Shell",
    ".bash": "Shell",
    ".ps1": "PowerShell",
    ".sql": "SQL",
    ".lua": "Lua",
    ".r": "R",
    ".dart": "Dart",
    ".ex": "Elixir",
    ".exs": "Elixir",
    ".erl": "Erlang",
    ".hs": "Haskell",
    ".html": "HTML",
    ".css": "CSS",
    ".vue": "Vue",
    ".tf": "HCL",
}

@dataclass(frozen=True)
class CommentSyntax:
    """Line-comment prefixes and ``(open, close)`` block markers of a language."""

    line: tuple[str, ...] = ()
    blocks: tuple[tuple[str, str], ...] = ()


C_BLOCK = ("/*", "*/")
C_STYLE = CommentSyntax(line=("//",), blocks=(C_BLOCK,))
HASH_STYLE = CommentSyntax(line=("#",))
MARKUP_STYLE = CommentSyntax(blocks=(("<!--", "-->"),))

COMMENT_SYNTAX: dict[str, CommentSyntax] = {
    "Python": CommentSyntax(line=("#",), blocks=(('"""', '"""'), ("'''", "'''"))),
    "Rust": C_STYLE,
    "Go": C_STYLE,
    "Java": C_STYLE,
    "Kotlin": C_STYLE,
    "Scala": C_STYLE,
    "JavaScript": C_STYLE,
    "TypeScript": C_STYLE,
    "C": C_STYLE,
    "C++": C_STYLE,
    "C#": C_STYLE,
    "Swift": C_STYLE,
    "Objective-C": C_STYLE,
    "Dart": C_STYLE,
    "PHP": CommentSyntax(line=("//", "#"), blocks=(C_BLOCK,)),
    "HCL": CommentSyntax(line=("#", "//"), blocks=(C_BLOCK,)),
    "CSS": CommentSyntax(blocks=(C_BLOCK,)),
    "Ruby": CommentSyntax(line=("#",), blocks=(("=begin", "=end"),)),
    "Shell": HASH_STYLE,
    "R": HASH_STYLE,
    "Elixir": HASH_STYLE,
    "PowerShell": CommentSyntax(line=("#",), blocks=(("<#", "#>"),)),
    "SQL": CommentSyntax(line=("--",), blocks=(C_BLOCK,)),
    "Lua": CommentSyntax(line=("--",), blocks=(("--[[", "]]"),)),
    "Haskell": CommentSyntax(line=("--",), blocks=(("{-", "-}"),)),
    "Erlang": CommentSyntax(line=("%",)),
    "HTML": MARKUP_STYLE,
    "Vue": CommentSyntax(line=("//",), blocks=(("<!--", "-->"), C_BLOCK)),
}

# Unknown language: the common markers
DEFAULT_COMMENT_SYNTAX = CommentSyntax(line=("//", "#", "--"), blocks=(C_BLOCK,))


def should_review_file(relative_path: str) -> bool:
    """Check if file should be reviewed based on name/extension."""
    parts = relative_path.split("/")
    if any(part in SKIP_DIRECTORIES for part in parts[:-1]):
        return False

    basename = parts[-1]
    if basename in SKIP_FILENAMES:
        return False

    lowered = basename.lower()
    if any(lowered.endswith(ext) for ext in SKIP_EXTENSIONS):
        return False

    return language_for(relative_path) is not None


def language_for(relative_path: str) -> str | None:
    return EXTENSION_LANGUAGES.get(Path(relative_path).suffix.lower())


def load_gitignore(root: Path) -> list[str]:
    """Read simple patterns from the top-level ``.gitignore``.

    Negations are not supported and are skipped.
    """
    path = root / ".gitignore"
    if not path.is_file():
        return []
    patterns = []
    for line in path.read_text(encoding="utf-8", errors="replace").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or line.startswith("!"):
            continue
        patterns.append(line.strip("/"))
    return patterns


def is_ignored(relative_path: str, patterns: list[str]) -> bool:
    parts = relative_path.split("/")
    for pattern in patterns:
        if "/" in pattern:
            if fnmatch.fnmatch(relative_path, pattern) or relative_path.startswith(pattern + "/"):
                return True
        elif any(fnmatch.fnmatch(part, pattern) for part in parts):
            return True
    return False


# =============================================================================
# SOURCE FILES
# =============================================================================
def count_lines_of_code(text: str, language: str | None = None) -> int:
    """Count lines that are neither blank nor comments in *language*.

    A block comment covers its opening line through the first line holding
    the close marker. Unknown languages use ``//``, ``#``, ``--`` and ``/* */``.
    """
    syntax = COMMENT_SYNTAX.get(language, DEFAULT_COMMENT_SYNTAX)
    block_end: str | None = None
    loc = 0
    for line in text.splitlines():
        line = line.strip()
        if block_end is not None:
            if block_end in line:
                block_end = None
            continue
        if not line:
            continue
        opened = next((b for b in syntax.blocks if line.startswith(b[0])), None)
        if opened is not None:
            start, end = opened
            if end not in line[len(start):]:
                block_end = end
            continue
        if syntax.line and line.startswith(syntax.line):
            continue
        loc += 1
    return loc


@dataclass
class SourceFile:
    """A file handed to the scheduler. ``content`` is None if it could not be read."""

    relative_path: str
    content: bytes | None
    language: str
    read_error: str | None = None

    @property
    def name(self) -> str:
        return self.relative_path.rsplit("/", 1)[-1]

    @property
    def extension(self) -> str:
        return Path(self.relative_path).suffix.lower()

    @property
    def size(self) -> int:
        return len(self.content) if self.content is not None else 0

    def text(self) -> str:
        """Decoded content.

        Raises:
            SchedulingError: unreadable or not UTF-8.
        """
        if self.content is None:
            raise SchedulingError(self.relative_path, self.read_error or "file could not be read")
        try:
            return self.content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise SchedulingError(self.relative_path, f"not valid UTF-8: {e}") from e

    def info(self, num_commits: int = 0, frequency: float = 0.0) -> SourceFileInfo:
        """Local identity and statistics for the report."""
        content = self.content or b""
        try:
            loc = count_lines_of_code(content.decode("utf-8"), self.language)
        except UnicodeDecodeError:
            loc = 0
        return SourceFileInfo(
            name=self.name,
            relative_path=self.relative_path,
            language=LanguageType(name=self.language, extension=self.extension),
            id_hash=hashlib.sha256(content).hexdigest(),
            statistics=Statistics(
                size=self.size,
                loc=loc,
                num_files=1,
                num_commits=num_commits,
                frequency=frequency,
            ),
        )


def walk_repository(root: str | Path, max_file_bytes: int = 200_000) -> Iterator[SourceFile]:
    """Yield every reviewable file under *root*, in path order.

    Files that cannot be read (or are larger than *max_file_bytes*) are still
    yielded, with ``content=None`` and a ``read_error``, so the run can report
    them as failed.
    """
    root = Path(root)
    patterns = load_gitignore(root)
    paths: list[str] = []

    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        rel_dir = "" if rel_dir == "." else rel_dir
        dirnames[:] = sorted(
            d for d in dirnames
            if d not in SKIP_DIRECTORIES
            and not is_ignored(f"{rel_dir}/{d}".lstrip("/"), patterns)
        )
        for filename in filenames:
            relative_path = f"{rel_dir}/{filename}".lstrip("/")
            if should_review_file(relative_path) and not is_ignored(relative_path, patterns):
                paths.append(relative_path)

    for relative_path in sorted(paths):
        path = root / relative_path
        language = language_for(relative_path) or "Unknown"
        try:
            size = path.stat().st_size
            if size > max_file_bytes:
                yield SourceFile(
                    relative_path, None, language,
                    read_error=f"file is {size} bytes, limit is {max_file_bytes}",
                )
                continue
            content = path.read_bytes()
        except OSError as e:
            logger.warning("Cannot read %s: %s", relative_path, e)
            yield SourceFile(relative_path, None, language, read_error=str(e))
            continue
        yield SourceFile(relative_path, content, language)


# =============================================================================
# LANGUAGE BREAKDOWN
# =============================================================================
@dataclass
class LanguageBreakdown:
    """Accumulates per-language size, LOC and file counts."""

    languages: dict[str, LanguageType] = field(default_factory=dict)

    def add(self, info: SourceFileInfo) -> None:
        name = info.language.name
        current = self.languages.get(name)
        if current is None:
            current = LanguageType(name=name, extension=info.language.extension)
            self.languages[name] = current
        stats = current.statistics
        stats.size += info.statistics.size
        stats.loc += info.statistics.loc
        stats.num_files += 1
        stats.num_commits += info.statistics.num_commits

    def language_types(self) -> list[LanguageType]:
        """Language types with ``frequency`` set to their share of total LOC."""
        types = sorted(self.languages.values(), key=lambda lt: lt.name)
        total_loc = sum(lt.statistics.loc for lt in types)
        for lt in types:
            lt.statistics.frequency = (
                lt.statistics.loc / total_loc * 100 if total_loc else 0.0
            )
        return types


def predominant_language(language_types: list[LanguageType]) -> str:
    """Language with the highest LOC share; ties go to the larger size."""
    best = ""
    best_key = (0.0, -1)
    for lt in language_types:
        key = (lt.statistics.frequency, lt.statistics.size)
        if key > best_key:
            best, best_key = lt.name, key
    return best
