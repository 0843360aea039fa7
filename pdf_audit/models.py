"""Records shared by the extraction engines, validators and remediation."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class Severity(str, Enum):
    """Issue severity, most to least urgent."""

    CRITICAL = "critical"
    SERIOUS = "serious"
    MODERATE = "moderate"
    MINOR = "minor"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 0,
    Severity.SERIOUS: 1,
    Severity.MODERATE: 2,
    Severity.MINOR: 3,
}


@dataclass
class Box:
    """Axis-aligned rectangle in top-left-origin page units."""

    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @classmethod
    def enclosing(cls, boxes: Iterable["Box"]) -> "Box":
        boxes = list(boxes)
        if not boxes:
            return cls()
        min_x = min(b.x for b in boxes)
        min_y = min(b.y for b in boxes)
        max_x = max(b.right for b in boxes)
        max_y = max(b.bottom for b in boxes)
        return cls(min_x, min_y, max_x - min_x, max_y - min_y)


@dataclass(frozen=True)
class Issue:
    """One accessibility defect produced by a validator."""

    id: str
    source: str
    severity: Severity
    code: str
    message: str
    wcag_criteria: tuple = ()
    location: Optional[str] = None
    suggestion: Optional[str] = None
    category: Optional[str] = None
    element: Optional[str] = None
    context: Optional[str] = None

    def dedup_key(self) -> tuple:
        return (self.source, self.code, self.location or "", self.message)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        data["wcag_criteria"] = list(self.wcag_criteria)
        return data


@dataclass
class SeverityTally:
    critical: int = 0
    serious: int = 0
    moderate: int = 0
    minor: int = 0
    total: int = 0

    @classmethod
    def from_issues(cls, issues: Iterable[Issue]) -> "SeverityTally":
        tally = cls()
        for issue in issues:
            setattr(tally, issue.severity.value, getattr(tally, issue.severity.value) + 1)
            tally.total += 1
        return tally


@dataclass
class ValidationResult:
    """Ordered issue list, severity tally and validator-specific counters."""

    issues: List[Issue] = field(default_factory=list)
    summary: SeverityTally = field(default_factory=SeverityTally)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "issues": [i.to_dict() for i in self.issues],
            "summary": asdict(self.summary),
            "metadata": dict(self.metadata),
        }


class IssueFactory:
    """Builds issues with ids that are deterministic within one validator run."""

    def __init__(self, source: str):
        self.source = source
        self._counter = 0

    def create(
        self,
        severity: Severity,
        code: str,
        message: str,
        wcag_criteria: Iterable[str] = (),
        location: Optional[str] = None,
        suggestion: Optional[str] = None,
        category: Optional[str] = None,
        element: Optional[str] = None,
        context: Optional[str] = None,
    ) -> Issue:
        self._counter += 1
        return Issue(
            id=f"{self.source}-{self._counter}",
            source=self.source,
            severity=severity,
            code=code,
            message=message,
            wcag_criteria=tuple(wcag_criteria),
            location=location,
            suggestion=suggestion,
            category=category,
            element=element,
            context=context,
        )
