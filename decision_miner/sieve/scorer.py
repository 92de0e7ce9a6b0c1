"""
Artifact sieve - rule-based scoring.

Scores an artifact 0-100 from cheap textual and structural signals and
decides whether it is worth proposing as a decision candidate. Evaluation is
pure: the same artifact and config always yield the same verdict, and no
input shape (missing body, no labels, None counts) makes it raise.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Pattern, Tuple

from pydantic import BaseModel, Field

DECISION_KEYWORDS: Tuple[str, ...] = (
    "decide", "decision", "chose", "choose", "choosing",
    "architecture", "design", "pattern", "approach",
    "trade-off", "tradeoff", "trade off",
    "why we", "reason for", "rationale",
    "migration", "migrate", "refactor",
    "breaking change", "deprecate", "deprecation",
    "replace", "replacing", "replaced",
    "switch to", "switched to", "switching",
    "adopt", "adopting", "adopted",
    "introduce", "introducing", "introduced",
    "remove", "removing", "removed",
    "standardize", "standardizing", "standardized",
    "upgrade", "upgrading", "upgraded",
    "framework", "library", "dependency",
    "api design", "schema", "database",
    "authentication", "authorization", "security",
    "performance", "optimization", "caching",
    "configuration", "infrastructure", "deployment",
)

DECISION_LABELS: Tuple[str, ...] = (
    "architecture",
    "breaking-change",
    "breaking",
    "rfc",
    "adr",
    "design",
    "infrastructure",
    "security",
    "performance",
    "migration",
    "deprecation",
)

SIGNIFICANT_FILE_PATTERNS: Tuple[str, ...] = (
    r"package\.json$",
    r"requirements\.txt$",
    r"pyproject\.toml$",
    r"go\.mod$",
    r"Gemfile$",
    r"pom\.xml$",
    r"build\.gradle$",
    r"\.config\.(ts|js|json)$",
    r"(?i)docker-compose",
    r"(?i)Dockerfile",
    r"\.github/workflows",
    r"\.circleci",
    r"schema\.(prisma|graphql|sql)$",
    r"migrations?/",
)

DOC_FILE_PATTERNS: Tuple[str, ...] = (
    r"(?i)\.(md|mdx|rst|adoc)$",
    r"(?i)(^|/)docs?/",
    r"(?i)(^|/)(LICENSE|CHANGELOG|AUTHORS|CONTRIBUTORS)(\.[a-z]+)?$",
    r"(?i)\.txt$",
)

# Records of decisions themselves are never "just docs"
DECISION_RECORD_PATTERNS: Tuple[str, ...] = (
    r"(?i)(^|/)adrs?/",
    r"(?i)(^|/)decisions?/",
    r"(?i)(^|/)rfcs?/",
)

FORMATTING_TITLE = re.compile(
    r"^\s*(style|fmt|format(ting)?|lint(ing)?|prettier|typo|whitespace)\b",
    re.IGNORECASE,
)
MIGRATION_TITLE = re.compile(r"migrat|upgrad|deprecat|replac|switch|refactor", re.IGNORECASE)
EXPLAINS_WHY = re.compile(
    r"\b(why|reason|because|rationale|decision|chose|decided)\b", re.IGNORECASE
)
BREAKING = re.compile(r"breaking", re.IGNORECASE)

DEFAULT_WEIGHTS: Dict[str, int] = {
    "title_has_decision_keyword": 25,
    "body_has_decision_keyword": 15,
    "has_decision_label": 30,
    "modifies_significant_files": 20,
    "large_file_change_count": 10,
    "significant_code_changes": 15,
    "title_suggests_migration": 20,
    "body_has_why": 10,
}

# Keyword -> tag suggested for candidates that mention it
KEYWORD_TAGS: Dict[str, str] = {
    "architecture": "architecture",
    "design": "design",
    "migration": "migration",
    "migrate": "migration",
    "refactor": "refactoring",
    "deprecate": "deprecation",
    "schema": "database",
    "database": "database",
    "authentication": "security",
    "authorization": "security",
    "security": "security",
    "performance": "performance",
    "optimization": "performance",
    "caching": "performance",
    "dependency": "dependencies",
    "library": "dependencies",
    "framework": "dependencies",
    "upgrade": "dependencies",
    "infrastructure": "infrastructure",
    "deployment": "infrastructure",
    "configuration": "configuration",
    "api design": "api",
}

SUMMARY_MAX_CHARS = 500
TITLE_MAX_CHARS = 200
MAX_TAGS = 5


class SieveConfig(BaseModel):
    """Tunable sieve parameters."""

    threshold: int = Field(default=45, ge=0, le=100)
    weights: Dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    keywords: List[str] = Field(default_factory=lambda: list(DECISION_KEYWORDS))
    labels: List[str] = Field(default_factory=lambda: list(DECISION_LABELS))
    significant_file_patterns: List[str] = Field(
        default_factory=lambda: list(SIGNIFICANT_FILE_PATTERNS)
    )
    doc_file_patterns: List[str] = Field(
        default_factory=lambda: list(DOC_FILE_PATTERNS)
    )
    large_file_count: int = 10
    large_change_lines: int = 500
    trivial_diff_lines: int = 10

    def compiled(self, name: str) -> List[Pattern[str]]:
        return [re.compile(p) for p in getattr(self, name)]

    @classmethod
    def from_settings(cls, settings: Any) -> "SieveConfig":
        return cls(
            threshold=settings.sieve_threshold,
            trivial_diff_lines=settings.sieve_trivial_diff_lines,
        )


@dataclass(frozen=True)
class SieveInput:
    """Normalized view of an artifact; every field has a safe value."""

    title: str = ""
    body: str = ""
    diff: str = ""
    labels: Tuple[str, ...] = ()
    file_paths: Tuple[str, ...] = ()
    files_changed: int = 0
    additions: int = 0
    deletions: int = 0

    @property
    def changed_lines(self) -> int:
        total = self.additions + self.deletions
        if total or not self.diff:
            return total
        return sum(
            1
            for line in self.diff.splitlines()
            if line[:1] in ("+", "-") and not line.startswith(("+++", "---"))
        )

    @classmethod
    def from_artifact(cls, artifact: Any) -> "SieveInput":
        if isinstance(artifact, SieveInput):
            return artifact

        def get(name: str) -> Any:
            if isinstance(artifact, Mapping):
                return artifact.get(name)
            return getattr(artifact, name, None)

        def as_int(value: Any) -> int:
            try:
                return max(0, int(value or 0))
            except (TypeError, ValueError):
                return 0

        def as_text(value: Any) -> str:
            return value if isinstance(value, str) else ""

        labels = []
        for label in get("labels") or []:
            if isinstance(label, Mapping):
                label = label.get("name")
            if isinstance(label, str):
                labels.append(label)

        paths = [p for p in (get("file_paths") or []) if isinstance(p, str)]

        return cls(
            title=as_text(get("title")),
            body=as_text(get("body")),
            diff=as_text(get("diff")),
            labels=tuple(labels),
            file_paths=tuple(paths),
            files_changed=as_int(get("files_changed")) or len(paths),
            additions=as_int(get("additions")),
            deletions=as_int(get("deletions")),
        )


@dataclass(frozen=True)
class SieveVerdict:
    """Outcome of evaluating one artifact."""

    is_decision_worthy: bool
    score: int
    matched_rules: Tuple[str, ...]
    reason: str
    candidate_fields: Dict[str, Any] = field(default_factory=dict)


Rule = Callable[[SieveInput, SieveConfig], bool]


def _has_keyword(text: str, keywords: List[str]) -> bool:
    lowered = text.lower()
    return any(kw in lowered for kw in keywords)


def _has_decision_label(item: SieveInput, config: SieveConfig) -> bool:
    return any(
        dl in label.lower() for label in item.labels for dl in config.labels
    )


def _touches_significant_files(item: SieveInput, config: SieveConfig) -> bool:
    patterns = config.compiled("significant_file_patterns")
    return any(p.search(path) for path in item.file_paths for p in patterns)


RULES: Dict[str, Rule] = {
    "title_has_decision_keyword": lambda a, c: _has_keyword(a.title, c.keywords),
    "body_has_decision_keyword": lambda a, c: _has_keyword(a.body, c.keywords),
    "has_decision_label": _has_decision_label,
    "modifies_significant_files": _touches_significant_files,
    "large_file_change_count": lambda a, c: a.files_changed > c.large_file_count,
    "significant_code_changes": lambda a, c: a.changed_lines > c.large_change_lines,
    "title_suggests_migration": lambda a, c: bool(MIGRATION_TITLE.search(a.title)),
    "body_has_why": lambda a, c: bool(EXPLAINS_WHY.search(a.body)),
}


def _rejection_reason(item: SieveInput, config: SieveConfig) -> Optional[str]:
    """Hard rejections that no score can override."""
    if _has_decision_label(item, config):
        return None

    if not item.body.strip() and item.changed_lines <= config.trivial_diff_lines:
        return "trivial_change"

    if item.file_paths:
        record_patterns = [re.compile(p) for p in DECISION_RECORD_PATTERNS]
        if not any(p.search(path) for path in item.file_paths for p in record_patterns):
            doc_patterns = config.compiled("doc_file_patterns")
            significant = config.compiled("significant_file_patterns")
            if all(
                any(p.search(path) for p in doc_patterns)
                and not any(p.search(path) for p in significant)
                for path in item.file_paths
            ):
                return "docs_only"

    if FORMATTING_TITLE.search(item.title):
        return "formatting_only"

    return None


def _summary(item: SieveInput) -> str:
    paragraphs = [p.strip() for p in re.split(r"\n\s*\n", item.body) if p.strip()]
    text = paragraphs[0] if paragraphs else item.title
    return text[:SUMMARY_MAX_CHARS]


def _impact(score: int, significant: bool) -> str:
    if score >= 75 or (significant and score >= 60):
        return "high"
    if score >= 55:
        return "medium"
    return "low"


def _risk(item: SieveInput, significant: bool, config: SieveConfig) -> str:
    if any(BREAKING.search(label) for label in item.labels) or BREAKING.search(item.title):
        return "high"
    if item.deletions > config.large_change_lines:
        return "high"
    if significant:
        return "medium"
    return "low"


def _tags(item: SieveInput, config: SieveConfig) -> List[str]:
    tags = set()
    for label in item.labels:
        lowered = label.lower()
        if any(dl in lowered for dl in config.labels):
            tags.add(lowered)
    text = f"{item.title}\n{item.body}".lower()
    for keyword, tag in KEYWORD_TAGS.items():
        if keyword in text:
            tags.add(tag)
    return sorted(tags)[:MAX_TAGS]


def candidate_fields(item: SieveInput, score: int, config: SieveConfig) -> Dict[str, Any]:
    """Candidate attributes derived from the artifact and its score."""
    significant = _touches_significant_files(item, config)
    return {
        "title": (item.title.strip() or "Untitled change")[:TITLE_MAX_CHARS],
        "summary": _summary(item),
        "confidence": round(score / 100.0, 2),
        "impact": _impact(score, significant),
        "risk": _risk(item, significant, config),
        "tags": _tags(item, config),
    }


def evaluate(artifact: Any, config: Optional[SieveConfig] = None) -> SieveVerdict:
    """Score an artifact and decide whether it becomes a candidate.

    Args:
        artifact: ArtifactModel, RawArtifact, mapping or SieveInput
        config: Sieve parameters (defaults when omitted)

    Returns:
        SieveVerdict; ``candidate_fields`` is populated only when worthy
    """
    config = config or SieveConfig()
    item = SieveInput.from_artifact(artifact)

    matched: List[str] = []
    score = 0
    for name, rule in RULES.items():
        if rule(item, config):
            matched.append(name)
            score += config.weights.get(name, 0)
    score = min(score, 100)

    rejection = _rejection_reason(item, config)
    if rejection is not None:
        return SieveVerdict(False, score, tuple(matched), rejection)

    if score < config.threshold:
        return SieveVerdict(False, score, tuple(matched), "below_threshold")

    return SieveVerdict(
        True,
        score,
        tuple(matched),
        "passed",
        candidate_fields(item, score, config),
    )
