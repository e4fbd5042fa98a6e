#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Review ▸ Findings & Reports
===============================================================================

Canonical shapes produced by the Finding Normalizer and consumed by the
Report Writer. Severity is a closed enum; everything the backend says is
coerced onto it (see prompt_review.normalizer).
"""
from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence


class Severity(Enum):
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

    @property
    def rank(self) -> int:
        """0 for Critical … 3 for Low; sort key for reports."""
        return _RANK[self]

    @property
    def marker(self) -> str:
        return _MARKERS[self]


_RANK = {Severity.CRITICAL: 0, Severity.HIGH: 1, Severity.MEDIUM: 2, Severity.LOW: 3}
_MARKERS = {
    Severity.CRITICAL: "🔴",
    Severity.HIGH: "🟠",
    Severity.MEDIUM: "🟡",
    Severity.LOW: "🟢",
}

SEVERITY_ORDER: Sequence[Severity] = tuple(sorted(Severity, key=lambda s: s.rank))


@dataclass(frozen=True)
class Finding:
    """One normalised issue."""

    severity: Severity
    location: Optional[str]  # "path/to/file[:line]"
    description: str
    suggested_fix: str = ""
    rule_ref: Optional[str] = None  # e.g. "WCAG 1.1.1"
    title: str = ""

    @property
    def heading(self) -> str:
        if self.title:
            return self.title
        first = self.description.strip().splitlines()[0] if self.description.strip() else ""
        return first[:80] or self.severity.value


def sort_findings(findings: Sequence[Finding]) -> List[Finding]:
    """Critical → Low; stable within one level."""
    return sorted(findings, key=lambda f: f.severity.rank)


@dataclass(frozen=True)
class ReportSummary:
    files_analyzed: int
    counts: Dict[Severity, int]

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @classmethod
    def from_findings(cls, findings: Sequence[Finding], *, files_analyzed: int) -> "ReportSummary":
        counts = {sev: 0 for sev in SEVERITY_ORDER}
        for f in findings:
            counts[f.severity] += 1
        return cls(files_analyzed=files_analyzed, counts=counts)


@dataclass(frozen=True)
class Report:
    domain: str
    template: str
    summary: ReportSummary
    findings: List[Finding] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    created: _dt.date = field(default_factory=_dt.date.today)

    @classmethod
    def build(
        cls,
        *,
        domain: str,
        template: str,
        findings: Sequence[Finding] = (),
        recommendations: Sequence[str] = (),
        files_analyzed: int = 0,
        created: _dt.date | None = None,
    ) -> "Report":
        ordered = sort_findings(findings)
        return cls(
            domain=domain,
            template=template,
            summary=ReportSummary.from_findings(ordered, files_analyzed=files_analyzed),
            findings=ordered,
            recommendations=list(recommendations),
            created=created or _dt.date.today(),
        )

    @property
    def is_empty(self) -> bool:
        return not self.findings


__all__ = ["Severity", "SEVERITY_ORDER", "Finding", "ReportSummary", "Report", "sort_findings"]
