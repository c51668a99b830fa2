#  Agent Watch - Change Classifier
#
#  Pluggable heuristics behind the change analyzer: complexity counting,
#  dependency extraction, risk scoring, impact classification and
#  per-file findings. HeuristicClassifier is the regex implementation;
#  a parser-backed classifier can replace it without touching callers.
#
#  Depends on: models/enums.py
#  Used by:    services/change_analyzer.py, container.py

import posixpath
import re
from abc import ABC, abstractmethod

from agentwatch.models.enums import IMPACT_RANK, ChangeType, DependencyKind, ImpactLevel


class Classifier(ABC):
    """Interface every change classifier implements."""

    @abstractmethod
    def complexity(self, content: str) -> int:
        ...

    @abstractmethod
    def extract_dependencies(self, content: str, file_path: str) -> list[tuple[str, DependencyKind]]:
        """Return (project-relative target, kind) pairs for in-project dependencies."""

    @abstractmethod
    def risk_score(self, file_path: str, change_type: ChangeType,
                   lines_added: int = 0, lines_deleted: int = 0) -> float:
        ...

    @abstractmethod
    def path_impact(self, file_path: str) -> ImpactLevel | None:
        ...

    @abstractmethod
    def recommendations(self, file_path: str, change_type: ChangeType, lines_added: int = 0) -> list[str]:
        ...

    def classify_impact(self, score: float, change_type: ChangeType, file_path: str,
                        watcher_sourced: bool = False) -> ImpactLevel:
        """Map a risk score to an impact level.

        critical at >= 8, high at >= 5, otherwise the change-type default.
        Filesystem-sourced changes are raised to the path override level
        when the path alone marks them as high or critical.
        """
        if score >= 8.0:
            level = ImpactLevel.CRITICAL
        elif score >= 5.0:
            level = ImpactLevel.HIGH
        else:
            level = _CHANGE_TYPE_DEFAULT_IMPACT[ChangeType(change_type)]

        if watcher_sourced:
            override = self.path_impact(file_path)
            if override is not None and IMPACT_RANK[override] > IMPACT_RANK[level]:
                level = override
        return level


_CHANGE_TYPE_DEFAULT_IMPACT = {
    ChangeType.CREATE: ImpactLevel.LOW,
    ChangeType.MODIFY: ImpactLevel.MEDIUM,
    ChangeType.REFACTOR: ImpactLevel.MEDIUM,
    ChangeType.DELETE: ImpactLevel.MEDIUM,
}


# ---------------------------------------------------------------------------
# Regex tables
# ---------------------------------------------------------------------------

_CONTROL_STRUCTURES = [
    re.compile(r"\bif\b", re.IGNORECASE),
    re.compile(r"\belse\b", re.IGNORECASE),
    re.compile(r"\bfor\b", re.IGNORECASE),
    re.compile(r"\bwhile\b", re.IGNORECASE),
    re.compile(r"\bswitch\b", re.IGNORECASE),
    re.compile(r"\btry\b", re.IGNORECASE),
    re.compile(r"\bcatch\b", re.IGNORECASE),
    re.compile(r"\?[^?:\n;]*:"),  # ternary
]

_IMPORT_PATTERNS = [
    re.compile(r"""import\s+[^'"`;]*?\s+from\s+['"`]([^'"`]+)['"`]"""),
    re.compile(r"""import\s+['"`]([^'"`]+)['"`]"""),
    re.compile(r"""require\(\s*['"`]([^'"`]+)['"`]\s*\)"""),
    re.compile(r"""import\(\s*['"`]([^'"`]+)['"`]\s*\)"""),
]
_CSS_IMPORT = re.compile(r"""@import\s+(?:url\()?\s*['"`]([^'"`]+)['"`]""")

# Substrings that mark a file as critical for risk scoring
_CRITICAL_FILES = (
    "package.json",
    "docker-compose",
    "compose.yml",
    "compose.yaml",
    "Dockerfile",
    ".env",
    "config/",
    "migrations/",
)
_RISKY_EXTENSIONS = (".sql", ".json", ".yml", ".yaml", ".conf")
_CHANGE_TYPE_RISK = {
    ChangeType.DELETE: 2.0,
    ChangeType.REFACTOR: 1.5,
    ChangeType.MODIFY: 1.0,
    ChangeType.CREATE: 0.5,
}
MAX_RISK_SCORE = 10.0

# Path-only impact override for filesystem events
_CRITICAL_PATH_PATTERNS = [
    re.compile(r"package\.json$"),
    re.compile(r"docker", re.IGNORECASE),
    re.compile(r"config", re.IGNORECASE),
    re.compile(r"\.env"),
    re.compile(r"migration", re.IGNORECASE),
]
_HIGH_PATH_PATTERNS = [
    re.compile(r"\.(sql|yml|yaml|conf)$"),
    re.compile(r"test|spec", re.IGNORECASE),
]

_TEST_CONTENT = re.compile(r"\b(describe|it|test)\s*\(|def test_|\bassert\b")
_COMMENT_MARKERS = re.compile(r"/\*|//|^\s*#", re.MULTILINE)

# (rule, severity, pattern)
_SECURITY_RULES = [
    ("hardcoded-secret", "high",
     re.compile(r"""(api[_-]?key|secret|password|passwd|token)\s*[:=]\s*['"][^'"]{4,}['"]""", re.IGNORECASE)),
    ("eval-usage", "high", re.compile(r"\beval\s*\(")),
    ("shell-exec", "high", re.compile(r"child_process|\bexecSync\s*\(|shell\s*=\s*True")),
    ("sql-concatenation", "medium",
     re.compile(r"""\b(SELECT|INSERT|UPDATE|DELETE)\b[^;\n]*['"]\s*\+""", re.IGNORECASE)),
    ("raw-html", "medium", re.compile(r"innerHTML\s*=|dangerouslySetInnerHTML")),
    ("insecure-transport", "low", re.compile(r"""['"]http://(?!localhost|127\.0\.0\.1)""")),
]

# (kind, pattern)
_PERFORMANCE_RULES = [
    ("sync-io", re.compile(r"\b(readFileSync|writeFileSync|existsSync)\b")),
    ("await-in-loop", re.compile(r"\bfor\b[^\n{]*\{[^}]*\bawait\b")),
    ("nested-loop", re.compile(r"\bfor\b[^\n]*\n(?:[^\n]*\n){0,3}?\s+for\b")),
    ("debug-logging", re.compile(r"\bconsole\.log\s*\(")),
    ("select-star", re.compile(r"SELECT\s+\*", re.IGNORECASE)),
]
LARGE_FILE_LINES = 500


def _line_of(content: str, offset: int) -> int:
    return content.count("\n", 0, offset) + 1


class HeuristicClassifier(Classifier):
    """Regex heuristics over raw file text."""

    def complexity(self, content: str) -> int:
        if not content:
            return 0
        return 1 + sum(len(p.findall(content)) for p in _CONTROL_STRUCTURES)

    def extract_dependencies(self, content: str, file_path: str) -> list[tuple[str, DependencyKind]]:
        if not content:
            return []
        base = posixpath.dirname(file_path)
        found: list[tuple[str, DependencyKind]] = []
        seen: set[tuple[str, DependencyKind]] = set()

        for pattern in _IMPORT_PATTERNS:
            for match in pattern.finditer(content):
                spec = match.group(1)
                if not spec.startswith((".", "/")):
                    continue  # external package
                target = self._resolve(base, spec)
                if target and (target, DependencyKind.IMPORT) not in seen:
                    seen.add((target, DependencyKind.IMPORT))
                    found.append((target, DependencyKind.IMPORT))

        for match in _CSS_IMPORT.finditer(content):
            spec = match.group(1)
            if "://" in spec:
                continue
            target = self._resolve(base, spec)
            if target and (target, DependencyKind.CSS_IMPORT) not in seen:
                seen.add((target, DependencyKind.CSS_IMPORT))
                found.append((target, DependencyKind.CSS_IMPORT))

        return found

    @staticmethod
    def _resolve(base: str, spec: str) -> str | None:
        """Resolve an import specifier to a project-relative posix path."""
        if spec.startswith("/"):
            target = posixpath.normpath(spec.lstrip("/"))
        else:
            target = posixpath.normpath(posixpath.join(base, spec))
        if target.startswith("..") or target == ".":
            return None  # escapes the project root
        return target

    def risk_score(self, file_path: str, change_type: ChangeType,
                   lines_added: int = 0, lines_deleted: int = 0) -> float:
        score = 1.0
        if any(marker in file_path for marker in _CRITICAL_FILES):
            score += 2.0
        if file_path.lower().endswith(_RISKY_EXTENSIONS):
            score += 1.0
        score += _CHANGE_TYPE_RISK.get(ChangeType(change_type), 1.0)
        if lines_added > 100:
            score += 1.0
        if lines_deleted > 50:
            score += 1.5
        return min(score, MAX_RISK_SCORE)

    def path_impact(self, file_path: str) -> ImpactLevel | None:
        if any(p.search(file_path) for p in _CRITICAL_PATH_PATTERNS):
            return ImpactLevel.CRITICAL
        if any(p.search(file_path) for p in _HIGH_PATH_PATTERNS):
            return ImpactLevel.HIGH
        return None

    def recommendations(self, file_path: str, change_type: ChangeType, lines_added: int = 0) -> list[str]:
        recs = []
        lowered = file_path.lower()
        if "package.json" in lowered:
            recs.append("Run npm audit after dependency changes")
            recs.append("Update lockfile and verify compatibility")
        if "docker" in lowered:
            recs.append("Test container build and deployment")
            recs.append("Verify security scanning results")
        if ChangeType(change_type) == ChangeType.DELETE:
            recs.append("Verify no references remain")
            recs.append("Check for broken imports")
        if lines_added > 50:
            recs.append("Add unit tests for new functionality")
            recs.append("Consider breaking into smaller changes")
        return recs

    def risk_factors(self, file_path: str, lines_added: int = 0, lines_deleted: int = 0) -> list[str]:
        factors = []
        if lines_added > 100:
            factors.append("Large addition")
        if lines_deleted > 50:
            factors.append("Significant deletion")
        if "config" in file_path:
            factors.append("Configuration change")
        if "package.json" in file_path:
            factors.append("Dependency change")
        return factors

    def content_flags(self, content: str) -> dict:
        return {
            "hasTests": bool(_TEST_CONTENT.search(content)),
            "hasComments": bool(_COMMENT_MARKERS.search(content)),
        }

    def security_findings(self, content: str) -> list[dict]:
        findings = []
        for rule, severity, pattern in _SECURITY_RULES:
            for match in pattern.finditer(content):
                findings.append({"rule": rule, "severity": severity,
                                 "line": _line_of(content, match.start())})
        return findings

    def performance_findings(self, content: str) -> list[dict]:
        findings = []
        for kind, pattern in _PERFORMANCE_RULES:
            for match in pattern.finditer(content):
                findings.append({"kind": kind, "line": _line_of(content, match.start())})
        line_count = content.count("\n") + 1
        if line_count > LARGE_FILE_LINES:
            findings.append({"kind": "large-file", "line": line_count})
        return findings
