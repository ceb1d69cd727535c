"""Turn raw model output into a validated ``FileReview``.

Models wrap JSON in markdown, think out loud, leave trailing commas and get
cut off mid-object. The pipeline is: strip artefacts, parse, repair and
re-parse on failure, then check the shape field by field. Anything that is
dropped along the way is recorded on the review as a ``general`` error.
"""

import json
import logging
import re
from dataclasses import dataclass, field

from errors import ResponseValidationError
from models import (
    DEFAULT_GREEN_IMPROVEMENT_THRESHOLD,
    CodeError,
    FileReview,
    Improvement,
    SecurityIssue,
    Severity,
    SourceFileInfo,
    calculate_file_rag_status,
)

logger = logging.getLogger(__name__)

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)
_FENCE = re.compile(r"```[a-zA-Z]*")
# Control characters other than tab, newline and carriage return
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_PARTIAL_NUMBER = re.compile(r"-?\d*\.?\d*[eE]?[+-]?$")

_CLOSERS = {"{": "}", "[": "]"}
_LITERALS = ("true", "false", "null")


# =============================================================================
# CLEAN-UP
# =============================================================================
def _clean(text: str) -> str:
    text = _THINK_BLOCK.sub("", text)
    text = _FENCE.sub("", text)
    return _CONTROL_CHARS.sub("", text)


def strip_artifacts(text: str) -> str:
    """Remove think blocks, code fences and control characters, then cut out
    the outermost JSON object. A truncated object runs to the end of the text.
    """
    text = _clean(text)
    start = text.find("{")
    if start == -1:
        return text.strip()
    end = text.rfind("}")
    if end < start:
        return text[start:].strip()
    return text[start : end + 1]


def _drop_trailing_comma(out: list[str]) -> None:
    while out and out[-1].isspace():
        out.pop()
    if out and out[-1] == ",":
        out.pop()


def _complete_dangling_token(out: list[str]) -> None:
    """Fix whatever the text was cut off in the middle of (outside a string)."""
    tail = "".join(out).rstrip()
    out[:] = list(tail)
    if not tail:
        return

    word = re.search(r"[A-Za-z]+$", tail)
    if word:
        prefix = word.group(0)
        del out[-len(prefix):]
        for literal in _LITERALS:
            if literal.startswith(prefix):
                out.extend(literal)
                return
        # Unknown bare word: drop it and treat what precedes as dangling
        _complete_dangling_token(out)
        return

    number = _PARTIAL_NUMBER.search(tail)
    if number and number.group(0) and tail[-1] in ".eE+-":
        while out and out[-1] in ".eE+-":
            out.pop()
        if out and not (out[-1].isdigit()):
            _complete_dangling_token(out)
        return

    if tail.endswith(","):
        out.pop()
    elif tail.endswith(":"):
        out.extend("null")


def repair_json(text: str) -> str:
    """Best-effort repair of almost-JSON.

    Outside strings: removes ``//``, ``/* */`` and ``#`` comments and drops
    trailing commas before a closing bracket. At the end of input: closes an
    unterminated string, completes a dangling key, value or literal, and
    closes every open bracket.
    """
    out: list[str] = []
    stack: list[str] = []
    in_string = False
    escaped = False
    string_start = -1
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]

        if in_string:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            i += 1
            continue

        if ch == '"':
            in_string = True
            string_start = len(out)
            out.append(ch)
        elif ch == "/" and text.startswith("//", i) or ch == "#":
            newline = text.find("\n", i)
            i = n if newline == -1 else newline
            continue
        elif ch == "/" and text.startswith("/*", i):
            close = text.find("*/", i + 2)
            i = n if close == -1 else close + 2
            continue
        elif ch in _CLOSERS:
            stack.append(ch)
            out.append(ch)
        elif ch in "}]":
            _drop_trailing_comma(out)
            if stack and _CLOSERS[stack[-1]] == ch:
                stack.pop()
            out.append(ch)
        else:
            out.append(ch)
        i += 1

    if in_string:
        if escaped:
            out.pop()
        out.append('"')
        # A lone string directly inside an object is a key with no value
        before = "".join(out[:string_start]).rstrip()
        if stack and stack[-1] == "{" and before.endswith(("{", ",")):
            out.extend(":null")
    else:
        _complete_dangling_token(out)
        tail = "".join(out).rstrip()
        if stack and stack[-1] == "{" and tail.endswith('"'):
            # Closing quote of a complete key with no colon after it
            key_start = tail.rfind('"', 0, len(tail) - 1)
            if key_start != -1 and tail[:key_start].rstrip().endswith(("{", ",")):
                out.extend(":null")

    for opener in reversed(stack):
        _drop_trailing_comma(out)
        out.append(_CLOSERS[opener])

    return "".join(out)


def parse_json_object(text: str) -> tuple[dict, bool]:
    """Parse *text* into a dict.

    The first JSON value starting at the first ``{`` wins, so trailing prose
    is ignored. If that fails the text is repaired, first as a truncated tail
    and then as the ``{``...``}`` span.

    Returns:
        ``(obj, repaired)``; *repaired* is True when ``repair_json`` was needed.

    Raises:
        ResponseValidationError: no object, or not valid JSON even after repair.
    """
    cleaned = _clean(text)
    start = cleaned.find("{")
    if start == -1:
        raise ResponseValidationError("No JSON object found in response")
    tail = cleaned[start:]

    try:
        obj, _ = json.JSONDecoder(strict=False).raw_decode(tail)
        return obj, False
    except json.JSONDecodeError:
        pass

    last_error: json.JSONDecodeError | None = None
    for candidate in (tail, strip_artifacts(text)):
        try:
            obj = json.loads(repair_json(candidate), strict=False)
        except json.JSONDecodeError as e:
            last_error = e
            continue
        if isinstance(obj, dict):
            logger.debug("Repaired malformed JSON response")
            return obj, True

    raise ResponseValidationError(
        f"Response is not valid JSON, even after repair: {last_error}"
    ) from last_error


# =============================================================================
# FIELD NORMALISATION
# =============================================================================
_SEVERITY_ALIASES: dict[str, Severity] = {
    "info": Severity.LOW,
    "informational": Severity.LOW,
    "minor": Severity.LOW,
    "low": Severity.LOW,
    "medium": Severity.MEDIUM,
    "moderate": Severity.MEDIUM,
    "high": Severity.HIGH,
    "major": Severity.HIGH,
    "critical": Severity.CRITICAL,
    "severe": Severity.CRITICAL,
    "blocker": Severity.CRITICAL,
}


def _severity_from_score(score: float) -> Severity | None:
    """CVSS v3 qualitative bands."""
    if score <= 0 or score > 10:
        return None
    if score >= 9:
        return Severity.CRITICAL
    if score >= 7:
        return Severity.HIGH
    if score >= 4:
        return Severity.MEDIUM
    return Severity.LOW


def normalise_severity(value) -> Severity | None:
    """Map a model-supplied severity onto ``Severity``; None if unrecognised."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _severity_from_score(float(value))
    if not isinstance(value, str):
        return None
    key = value.strip().lower()
    if key in _SEVERITY_ALIASES:
        return _SEVERITY_ALIASES[key]
    try:
        return _severity_from_score(float(key))
    except ValueError:
        return None


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def _entries(obj: dict, key: str, notes: list[str]) -> list[dict]:
    value = obj.get(key)
    if value is None:
        return []
    if isinstance(value, dict):
        value = [value]
    if not isinstance(value, list):
        notes.append(f"'{key}' was not a list and was ignored")
        return []

    entries = []
    for position, entry in enumerate(value):
        if isinstance(entry, dict):
            entries.append(entry)
        else:
            notes.append(f"Dropped non-object entry {position} in '{key}'")
    return entries


def _security_issues(obj: dict, notes: list[str]) -> list[SecurityIssue]:
    issues = []
    for entry in _entries(obj, "security_issues", notes):
        severity = normalise_severity(entry.get("severity"))
        if severity is None:
            notes.append(
                f"Dropped security issue with unrecognised severity "
                f"{entry.get('severity')!r}: {_text(entry.get('threat'))[:80]}"
            )
            continue
        issues.append(
            SecurityIssue(
                severity=severity,
                code=_text(entry.get("code")),
                threat=_text(entry.get("threat")),
                mitigation=_text(entry.get("mitigation")),
            )
        )
    return issues


def _code_errors(obj: dict, notes: list[str]) -> list[CodeError]:
    return [
        CodeError(
            code=_text(entry.get("code")),
            issue=_text(entry.get("issue")),
            resolution=_text(entry.get("resolution")),
        )
        for entry in _entries(obj, "errors", notes)
    ]


def _improvements(obj: dict, notes: list[str]) -> list[Improvement]:
    return [
        Improvement(
            code=_text(entry.get("code")),
            suggestion=_text(entry.get("suggestion")),
            improvement_details=_text(
                entry.get("improvement_details", entry.get("example"))
            ),
        )
        for entry in _entries(obj, "improvements", notes)
    ]


# =============================================================================
# VALIDATION
# =============================================================================
@dataclass
class ValidationOutcome:
    review: FileReview
    repaired: bool = False
    notes: list[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return self.review.degraded


def validate_file_review(
    text: str,
    source_file_info: SourceFileInfo,
    green_threshold: int = DEFAULT_GREEN_IMPROVEMENT_THRESHOLD,
) -> ValidationOutcome:
    """Validate model output for one file.

    The file's identity comes from *source_file_info* (the local scan), never
    from the model's echo. The RAG status is recomputed from the findings.

    Raises:
        ResponseValidationError: unparseable, or a required field is missing.
    """
    obj, repaired = parse_json_object(text)

    for required in ("source_file_info", "summary"):
        if obj.get(required) is None:
            raise ResponseValidationError(f"Required field '{required}' is missing")
    if not isinstance(obj["summary"], str):
        raise ResponseValidationError("Field 'summary' must be a string")

    notes: list[str] = []
    security_issues = _security_issues(obj, notes)
    errors = _code_errors(obj, notes)
    improvements = _improvements(obj, notes)

    errors.extend(
        CodeError(code="general", issue=note, resolution="Re-run the review for this file.")
        for note in notes
    )

    rag_status = calculate_file_rag_status(
        security_issues, errors, improvements, green_threshold
    )
    claimed = obj.get("file_rag_status")
    if claimed and str(claimed).strip().lower() != rag_status.value.lower():
        logger.debug(
            "%s: model said %s, computed %s",
            source_file_info.relative_path,
            claimed,
            rag_status.value,
        )

    review = FileReview(
        source_file_info=source_file_info,
        summary=obj["summary"],
        file_rag_status=rag_status,
        security_issues=security_issues,
        errors=errors,
        improvements=improvements,
        degraded=repaired or bool(notes),
    )
    return ValidationOutcome(review=review, repaired=repaired, notes=notes)


def degraded_file_review(
    source_file_info: SourceFileInfo,
    reason: str,
    green_threshold: int = DEFAULT_GREEN_IMPROVEMENT_THRESHOLD,
) -> FileReview:
    """Synthetic review for a file whose review could not be completed."""
    errors = [
        CodeError(
            code="general",
            issue=reason,
            resolution="Re-run the review for this file.",
        )
    ]
    return FileReview(
        source_file_info=source_file_info,
        summary=f"Review incomplete: {reason}",
        file_rag_status=calculate_file_rag_status([], errors, [], green_threshold),
        errors=errors,
        degraded=True,
    )
