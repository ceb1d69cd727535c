"""Prompt templates for file and repository review.

Templates are plain data: an ordered tuple of ``(role, text)`` turns plus the
set of placeholders the turns may use. ``build_prompt`` substitutes only those
placeholders and appends the reviewed content as the last user turn, verbatim.
"""

import string
from dataclasses import dataclass, field

from errors import ConfigError

SYSTEM_ROLE = "system"
USER_ROLE = "user"


@dataclass(frozen=True)
class PromptMessage:
    role: str
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class PromptTemplate:
    name: str
    turns: tuple[tuple[str, str], ...]
    placeholders: frozenset[str]
    defaults: dict[str, str] = field(default_factory=dict)


# =============================================================================
# SHARED TURNS
# =============================================================================
FILE_REVIEW_SCHEMA = """{
  "source_file_info": {"name": "<file name>", "relative_path": "<path>"},
  "summary": "<summary of the findings of the review>",
  "file_rag_status": "Red|Amber|Green",
  "security_issues": [
    {"severity": "Low|Medium|High|Critical", "code": "<affected code, with line number>",
     "threat": "<description of the threat>", "mitigation": "<how to mitigate it>"}
  ],
  "errors": [
    {"code": "<affected code, with line number>", "issue": "<description of the error>",
     "resolution": "<how to resolve it>"}
  ],
  "improvements": [
    {"code": "<affected code, with line number>", "suggestion": "<what to improve>",
     "improvement_details": "<example of the improved code>"}
  ]
}"""

_LANGUAGE_DIRECTIVE = (
    "Write every natural-language value in your answer in {target_language}. "
    "Do not translate code."
)

_SCOPE_RULES = (
    "Focus on critical errors, best practice violations and security "
    "vulnerabilities. State what the code does ('is'), not what it might do "
    "('may'). Exclude trivial issues such as formatting, naming preferences "
    "or TODO comments. Give actionable feedback."
)

_RAG_RULES = (
    "If no errors or security issues are found and fewer than "
    "{green_threshold} improvements are found, file_rag_status is 'Green'. "
    "Any High or Critical security issue makes it 'Red'. Otherwise 'Amber'."
)

_JSON_RULES = (
    "Respond with ONLY one valid JSON object. No markdown, no explanation, "
    "no extra text. Use empty lists when there is nothing to report. "
    "Follow exactly this structure:\n{schema}"
)


# =============================================================================
# TEMPLATES
# =============================================================================
PROMPT_TEMPLATES: dict[str, PromptTemplate] = {
    "general_review": PromptTemplate(
        name="general_review",
        turns=(
            (SYSTEM_ROLE, _LANGUAGE_DIRECTIVE),
            (
                SYSTEM_ROLE,
                "As an expert code reviewer with comprehensive knowledge of "
                "software development standards, review the following code.",
            ),
            (SYSTEM_ROLE, _SCOPE_RULES + "\n" + _RAG_RULES),
            (SYSTEM_ROLE, _JSON_RULES),
        ),
        placeholders=frozenset({"target_language", "green_threshold", "schema"}),
        defaults={"schema": FILE_REVIEW_SCHEMA, "green_threshold": "10"},
    ),
    "security_review": PromptTemplate(
        name="security_review",
        turns=(
            (SYSTEM_ROLE, _LANGUAGE_DIRECTIVE),
            (
                SYSTEM_ROLE,
                "As an expert security code reviewer with comprehensive "
                "knowledge of software and information security, review the "
                "following code.",
            ),
            (
                SYSTEM_ROLE,
                "Focus exclusively on security vulnerabilities and flaws. "
                "State what the code does ('is'), not what it might do ('may'). "
                "Ignore test code that is not shipped to production. "
                "Do not flag API keys read from environment variables. "
                "Provide a mitigation for each issue.\n" + _RAG_RULES,
            ),
            (SYSTEM_ROLE, _JSON_RULES),
        ),
        placeholders=frozenset({"target_language", "green_threshold", "schema"}),
        defaults={"schema": FILE_REVIEW_SCHEMA, "green_threshold": "10"},
    ),
    "repository_summary": PromptTemplate(
        name="repository_summary",
        turns=(
            (SYSTEM_ROLE, _LANGUAGE_DIRECTIVE),
            (
                SYSTEM_ROLE,
                "You are a lead engineer writing an executive summary of a code "
                "review. You receive one summary per reviewed file.",
            ),
            (
                SYSTEM_ROLE,
                "Condense them into plain prose of at most {max_words} words. "
                "Lead with the most serious risks. No lists, no markdown, no JSON.",
            ),
        ),
        placeholders=frozenset({"target_language", "max_words"}),
    ),
}

REVIEW_TEMPLATE_IDS = {"general": "general_review", "security": "security_review"}


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------
def _fields(text: str) -> set[str]:
    return {
        name
        for _, name, _, _ in string.Formatter().parse(text)
        if name is not None
    }


def validate_template(template: PromptTemplate) -> None:
    """Raise ``ConfigError`` if a turn uses a placeholder the template does not declare."""
    for _, text in template.turns:
        undeclared = _fields(text) - template.placeholders
        if undeclared:
            raise ConfigError(
                f"Template {template.name!r} uses undeclared placeholder(s): "
                f"{sorted(undeclared)}"
            )


def build_prompt(
    template_id: str,
    user_content: str | None = None,
    **values,
) -> list[PromptMessage]:
    """Assemble the ordered messages for *template_id*.

    Args:
        template_id: Key into ``PROMPT_TEMPLATES``
        user_content: Appended unchanged as the final user turn
        **values: Placeholder values; template defaults fill the gaps

    Raises:
        ConfigError: unknown template, undeclared placeholder, missing value.
    """
    template = PROMPT_TEMPLATES.get(template_id)
    if template is None:
        raise ConfigError(f"Unknown prompt template {template_id!r}")

    validate_template(template)

    resolved = {**template.defaults, **{k: str(v) for k, v in values.items()}}
    missing = template.placeholders - resolved.keys()
    if missing:
        raise ConfigError(
            f"Template {template_id!r} is missing value(s) for {sorted(missing)}"
        )

    messages = [
        PromptMessage(role=role, content=text.format_map(resolved))
        for role, text in template.turns
    ]
    if user_content is not None:
        messages.append(PromptMessage(role=USER_ROLE, content=user_content))
    return messages


def file_review_content(relative_path: str, content: str) -> str:
    """The user turn for one file."""
    return f"File name: {relative_path}\n{content}"
