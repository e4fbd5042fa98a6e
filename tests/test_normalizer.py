#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Finding Normalizer tests
===============================================================================

Backend replies arrive as JSON (bare, fenced, or wrapped in prose) or as the
template's Markdown report. Both must land on the same canonical Report, or
fail with MalformedFinding – never a half‑filled finding.
"""
from __future__ import annotations

import datetime as dt
import json
import logging

import pytest

from prompt_review.errors import MalformedFinding
from prompt_review.models import Severity
from prompt_review.normalizer import SCHEMA, coerce_severity, no_issue_phrases, normalize_reply
from prompt_review.templates import parse_template

log = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")


def _template(requires_location: bool = True, no_issues: str = "ACCESSIBILITY_PASS, NO_ISSUES_FOUND"):
    text = (
        "# A11y\n\n## Guard Clause\n```guard\nNO_HTML_PROVIDED <- HTML is blank\n```\n\n"
        f"## Settings\n```settings\nrequires-location: {str(requires_location).lower()}\nno-issues: {no_issues}\n```\n\n"
        "## Prompt\n```prompt\n{{HTML}}\n```\n\n## Report Format\n```markdown\n# R\n```\n"
    )
    return parse_template(text, domain="html", name="accessibility-check")


# =============================================================================
# Severity coercion
# =============================================================================
@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Critical", Severity.CRITICAL),
        ("CRITICAL", Severity.CRITICAL),
        ("🔴 Critical", Severity.CRITICAL),
        ("[HIGH]", Severity.HIGH),
        ("1. medium", Severity.MEDIUM),
        ("Low severity", Severity.LOW),
        ("major", Severity.HIGH),
        ("warning", Severity.MEDIUM),
        ("nit", Severity.LOW),
        ("🟡", Severity.MEDIUM),
        (Severity.LOW, Severity.LOW),
    ],
)
def test_coerce_severity(raw, expected) -> None:
    assert coerce_severity(raw) is expected


@pytest.mark.parametrize("raw", ["", "   ", "urgent", "High or Low", "Critical bug in login", None, 3])
def test_coerce_severity_rejects(raw) -> None:
    with pytest.raises(MalformedFinding):
        coerce_severity(raw)


# =============================================================================
# No‑issue replies
# =============================================================================
@pytest.mark.parametrize("reply", ["ACCESSIBILITY_PASS", "  NO_ISSUES_FOUND\n"])
def test_no_issue_phrase_gives_empty_report(reply: str) -> None:
    report = normalize_reply(reply, _template(), files_analyzed=1)
    assert report.findings == []
    assert report.is_empty
    assert all(n == 0 for n in report.summary.counts.values())
    assert report.summary.files_analyzed == 1


def test_no_issue_phrases_always_include_default() -> None:
    assert no_issue_phrases(_template(no_issues="LGTM")) == ("LGTM", "NO_ISSUES_FOUND")


def test_empty_findings_array_gives_empty_report() -> None:
    report = normalize_reply('{"findings": []}', _template())
    assert report.findings == [] and report.summary.total == 0


# =============================================================================
# JSON replies
# =============================================================================
def test_json_reply_sorted_and_aliased() -> None:
    payload = {
        "findings": [
            {"severity": "low", "title": "Nit", "file": "index.html", "line": 3, "issue": "Trailing space"},
            {
                "severity": "🔴 Critical",
                "title": "Image without alt",
                "location": "index.html:12",
                "description": "Screen readers announce the file name.",
                "suggestedFix": '<img src="logo.png" alt="ACME">',
                "wcagOrRuleRef": "WCAG 1.1.1",
            },
            {"severity": "Medium", "location": "index.html:20", "description": "Low contrast."},
        ],
        "recommendations": ["Add an automated axe run in CI."],
        "summary": {"filesAnalyzed": 4},
    }
    report = normalize_reply(json.dumps(payload), _template(), created=dt.date(2024, 5, 1))
    log.info("Report: %s", report)

    assert [f.severity for f in report.findings] == [Severity.CRITICAL, Severity.MEDIUM, Severity.LOW]
    crit = report.findings[0]
    assert crit.suggested_fix == '<img src="logo.png" alt="ACME">'
    assert crit.rule_ref == "WCAG 1.1.1"
    assert report.findings[2].location == "index.html:3"
    assert report.findings[2].description == "Trailing space"
    assert report.recommendations == ["Add an automated axe run in CI."]
    assert report.summary.files_analyzed == 4
    assert report.summary.counts[Severity.HIGH] == 0
    assert report.created == dt.date(2024, 5, 1)


def test_json_inside_fence_and_prose() -> None:
    reply = 'Here you go:\n```json\n{"findings": [{"severity": "High", "location": "a.py:1", "description": "x"}]}\n```\nThanks'
    report = normalize_reply(reply, _template())
    assert len(report.findings) == 1 and report.findings[0].severity is Severity.HIGH


def test_bare_list_is_accepted() -> None:
    report = normalize_reply('[{"severity": "Low", "location": "a:1", "description": "d"}]', _template())
    assert len(report.findings) == 1


@pytest.mark.parametrize(
    "reply",
    [
        '{"findings": [{"severity": "urgent", "location": "a:1", "description": "d"}]}',
        '{"findings": [{"severity": "High", "location": "a:1"}]}',
        '{"findings": [{"severity": "High", "description": "no location"}]}',
        '{"findings": "none"}',
        '{"issues": []}',
        '{"findings": [1, 2]}',
        '{"findings": [ {"severity": "High",',
        "   ",
        "Looks fine to me.",
    ],
)
def test_malformed_replies_raise(reply: str) -> None:
    with pytest.raises(MalformedFinding) as exc:
        normalize_reply(reply, _template())
    log.info("Rejected reply %r: %s", reply, exc.value)


def test_location_optional_when_template_allows() -> None:
    tpl = _template(requires_location=False)
    report = normalize_reply('{"findings": [{"severity": "High", "description": "Root cause"}]}', tpl)
    assert report.findings[0].location is None


def test_schema_is_draft7_with_severity_enum() -> None:
    assert SCHEMA["$schema"].startswith("http://json-schema.org/draft-07")
    sev = SCHEMA["definitions"]["finding"]["properties"]["severity"]
    assert sev["enum"] == ["Critical", "High", "Medium", "Low"]


# =============================================================================
# Markdown replies
# =============================================================================
_MARKDOWN = """\
# Accessibility Report

## Summary
| Metric | Value |
|--------|-------|
| Files analyzed | 1 |

## Findings

### 🟡 Medium: Low contrast link
- **Location:** line 8
- **Description:** Grey on white is 2.9:1.

### 🔴 Critical: Image without alt
- **Location:** `line 3`
- **WCAG:** 1.1.1 Non-text Content
- **Description:** The logo has no text alternative.
  Screen readers read the file name.
- **Suggested Fix:**
```html
<img src="logo.png" alt="ACME">
```

### [High] Unlabelled search field
- **Location:** line 5
- **Description:** The input has no label.

## Recommendations
- Run axe in CI.
- Add a skip link.
"""


def test_markdown_report_is_parsed() -> None:
    report = normalize_reply(_MARKDOWN, _template())
    for f in report.findings:
        log.info("%s", f)

    assert [f.severity for f in report.findings] == [Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM]
    crit = report.findings[0]
    assert crit.title == "Image without alt"
    assert crit.location == "line 3"
    assert crit.rule_ref == "1.1.1 Non-text Content"
    assert crit.description == "The logo has no text alternative.\nScreen readers read the file name."
    assert 'alt="ACME"' in crit.suggested_fix
    assert report.findings[1].title == "Unlabelled search field"
    assert report.recommendations == ["Run axe in CI.", "Add a skip link."]


def test_markdown_severity_buckets() -> None:
    reply = """\
## 🔴 Critical Issues
### SQL injection in search
- **Location:** app/search.rb:14
- **Description:** Interpolated params.

## 🟢 Low Priority
### Prefer `each_with_object`
- **Location:** app/util.rb:3
- **Description:** Style.
"""
    report = normalize_reply(reply, _template())
    assert [(f.severity, f.title) for f in report.findings] == [
        (Severity.CRITICAL, "SQL injection in search"),
        (Severity.LOW, "Prefer `each_with_object`"),
    ]


def test_markdown_finding_without_location_is_rejected() -> None:
    with pytest.raises(MalformedFinding):
        normalize_reply("### High: Something\n- **Description:** where?\n", _template())


def test_markdown_with_braces_in_code_stays_markdown() -> None:
    reply = """\
### High: Mutable default argument
- **Location:** loader.py:12
- **Description:** `def load(opts={})` shares one dict across calls.
- **Suggested Fix:** default to `None` and build `{}` inside the function.
"""
    report = normalize_reply(reply, _template())
    assert len(report.findings) == 1
    assert report.findings[0].title == "Mutable default argument"
    assert "opts={}" in report.findings[0].description


def test_markdown_with_json_fix_block_stays_markdown() -> None:
    reply = """\
## Findings

### Medium: Shell form CMD
- **Location:** Dockerfile:9
- **Description:** Signals are not forwarded to nginx.
- **Suggested Fix:**
```json
["nginx", "-g", "daemon off;"]
```

### Low: Unpinned base image
- **Location:** Dockerfile:1
- **Description:** `FROM nginx:latest` drifts; settings such as {"pin": true} help.
"""
    report = normalize_reply(reply, _template())
    assert [f.severity for f in report.findings] == [Severity.MEDIUM, Severity.LOW]
    assert '"daemon off;"' in report.findings[0].suggested_fix


def test_sole_fenced_json_reply_is_still_validated() -> None:
    with pytest.raises(MalformedFinding) as exc:
        normalize_reply('```json\n{"issues": []}\n```', _template())
    assert "findings" in str(exc.value)
