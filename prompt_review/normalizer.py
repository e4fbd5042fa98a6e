#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Review ▸ Finding Normalizer
===============================================================================

The only place backend output is trusted. A raw reply is turned into a
`Report` or rejected:

1) Exact "no issues" phrase (template `no-issues` setting, or
   NO_ISSUES_FOUND) → empty Report, nothing else is parsed.
2) JSON object (bare, fenced, or embedded in prose) → aliases mapped,
   severities coerced, then validated against the bundled Draft‑7 schema
   `prompt_review/finding_schema.json`.
3) Markdown findings, one heading per finding:

       ### 🔴 Critical: Image is missing alt text
       - **Location:** templates/index.html:14
       - **Description:** ...
       - **Fix:** ...
       - **Rule:** WCAG 1.1.1

   plus an optional `## Recommendations` bullet list.

Anything else raises `MalformedFinding`. So does a finding without a
location when the template requires one; findings are never dropped quietly.

Findings come back ordered Critical → High → Medium → Low.
"""
from __future__ import annotations

import datetime as _dt
import json
import re
from importlib import resources
from typing import Any, Dict, List, Optional, Tuple

from jsonschema import Draft7Validator, ValidationError

from prompt_review import get_logger
from prompt_review.errors import MalformedFinding
from prompt_review.models import Finding, Report, Severity
from prompt_review.templates import Template

log = get_logger(__name__)

DEFAULT_NO_ISSUES = ("NO_ISSUES_FOUND",)


# ─────────────────────────────────────────────────────────────────────────────
# Schema (loaded once)
# ─────────────────────────────────────────────────────────────────────────────
def _load_schema() -> Dict[str, Any]:
    with resources.files("prompt_review").joinpath("finding_schema.json").open(encoding="utf-8") as fh:
        return json.load(fh)


SCHEMA: Dict[str, Any] = _load_schema()
Draft7Validator.check_schema(SCHEMA)
_VALIDATOR = Draft7Validator(SCHEMA)


def _pretty_pointer(exc: ValidationError) -> str:
    return ".".join(["$", *(str(p) for p in exc.absolute_path)])


# ─────────────────────────────────────────────────────────────────────────────
# Severity coercion
# ─────────────────────────────────────────────────────────────────────────────
_SEVERITY_WORDS = {
    "critical": Severity.CRITICAL,
    "blocker": Severity.CRITICAL,
    "high": Severity.HIGH,
    "major": Severity.HIGH,
    "medium": Severity.MEDIUM,
    "moderate": Severity.MEDIUM,
    "warning": Severity.MEDIUM,
    "low": Severity.LOW,
    "minor": Severity.LOW,
    "info": Severity.LOW,
    "nit": Severity.LOW,
    "trivial": Severity.LOW,
}
_FILLER_WORDS = {"severity", "priority", "issue", "finding", "level"}
_SEVERITY_EMOJI = {"🔴": Severity.CRITICAL, "🟠": Severity.HIGH, "🟡": Severity.MEDIUM, "🟢": Severity.LOW}


def coerce_severity(raw: Any) -> Severity:
    """
    Map any spelling of a severity onto the canonical enum.

    Accepted: any case, surrounding emoji/brackets/punctuation/numbering
    ("🔴 Critical", "[HIGH]", "1. medium"), the aliases in `_SEVERITY_WORDS`,
    or a bare colour emoji. Raises MalformedFinding otherwise.
    """
    if isinstance(raw, Severity):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        raise MalformedFinding(f"Severity must be a non-empty string, got {raw!r}")

    tokens = re.sub(r"[^a-z]+", " ", raw.lower()).split()
    hits = {_SEVERITY_WORDS[t] for t in tokens if t in _SEVERITY_WORDS}
    if len(hits) == 1 and all(t in _SEVERITY_WORDS or t in _FILLER_WORDS for t in tokens):
        return hits.pop()
    if not tokens:
        emoji = {_SEVERITY_EMOJI[ch] for ch in raw if ch in _SEVERITY_EMOJI}
        if len(emoji) == 1:
            return emoji.pop()
    raise MalformedFinding(f"Unrecognised severity {raw!r}")


def _try_severity(raw: str) -> Optional[Severity]:
    try:
        return coerce_severity(raw)
    except MalformedFinding:
        return None


# ─────────────────────────────────────────────────────────────────────────────
# JSON path
# ─────────────────────────────────────────────────────────────────────────────
_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*\n(.*?)\n```", re.DOTALL)
_SOLE_FENCE_RE = re.compile(r"\A```(?:json)?[ \t]*\n((?:(?!\n```).)*)\n```[ \t]*\Z", re.DOTALL)

_KEY_ALIASES = {
    "suggestedFix": "suggested_fix",
    "suggested_fix": "suggested_fix",
    "fix": "suggested_fix",
    "suggestion": "suggested_fix",
    "wcagOrRuleRef": "rule_ref",
    "rule_ref": "rule_ref",
    "ruleRef": "rule_ref",
    "rule": "rule_ref",
    "wcag": "rule_ref",
    "issue": "description",
    "message": "description",
}


def _is_findings_payload(value: Any) -> bool:
    if isinstance(value, dict):
        return "findings" in value
    if isinstance(value, list):
        return bool(value) and all(isinstance(v, dict) and "severity" in v for v in value)
    return False


def _extract_json(text: str) -> Optional[Any]:
    """
    The JSON payload of *text*, or None when the reply is prose.

    The whole reply (bare or as its only fenced block) is taken as JSON
    whatever its shape. JSON found further in, in a fence or as the
    outermost {...} slice, only counts when it carries findings, so code
    samples such as `opts={}` or a ```json fix stay part of a Markdown reply.
    """
    sole = _SOLE_FENCE_RE.match(text)
    for cand in (text, sole.group(1) if sole else None):
        if cand is None:
            continue
        try:
            return json.loads(cand)
        except (json.JSONDecodeError, ValueError):
            continue

    candidates = [m.group(1) for m in _JSON_FENCE_RE.finditer(text)]
    first, last = text.find("{"), text.rfind("}")
    if first != -1 and last > first:
        candidates.append(text[first : last + 1])
    for cand in candidates:
        try:
            value = json.loads(cand)
        except (json.JSONDecodeError, ValueError):
            continue
        if _is_findings_payload(value):
            return value
    return None


def _looks_like_json(text: str) -> bool:
    if text.startswith(("{", "[")):
        return True
    sole = _SOLE_FENCE_RE.match(text)
    return bool(sole) and text.startswith("```json")


def _canonical_finding(item: Any, index: int) -> Dict[str, Any]:
    if not isinstance(item, dict):
        raise MalformedFinding(f"Finding #{index} is not an object: {item!r}")
    out: Dict[str, Any] = {}
    for key, val in item.items():
        out[_KEY_ALIASES.get(key, key)] = val

    if not out.get("location") and out.get("file"):
        line = out.get("line")
        out["location"] = f"{out['file']}:{line}" if line not in (None, "") else str(out["file"])
    out.pop("file", None)
    out.pop("line", None)

    if "severity" in out:
        try:
            out["severity"] = coerce_severity(out["severity"]).value
        except MalformedFinding as exc:
            raise MalformedFinding(f"Finding #{index}: {exc.message}") from exc
    return out


def _from_payload(payload: Any) -> Tuple[List[Dict[str, Any]], List[str], Optional[int]]:
    if isinstance(payload, list):
        payload = {"findings": payload}
    if not isinstance(payload, dict):
        raise MalformedFinding(f"Backend reply must be a JSON object, got {type(payload).__name__}")

    data = dict(payload)
    raw_findings = data.get("findings")
    if isinstance(raw_findings, list):
        data["findings"] = [_canonical_finding(item, i) for i, item in enumerate(raw_findings, 1)]
    summary = data.get("summary")
    if "files_analyzed" not in data and isinstance(summary, dict):
        fa = summary.get("filesAnalyzed", summary.get("files_analyzed"))
        if isinstance(fa, int):
            data["files_analyzed"] = fa

    errors = sorted(_VALIDATOR.iter_errors(data), key=lambda e: list(e.absolute_path))
    if errors:
        first = errors[0]
        raise MalformedFinding(f"Backend reply failed schema validation at {_pretty_pointer(first)}: {first.message}")
    return data["findings"], list(data.get("recommendations") or []), data.get("files_analyzed")


# ─────────────────────────────────────────────────────────────────────────────
# Markdown path
# ─────────────────────────────────────────────────────────────────────────────
_HEADING_RE = re.compile(r"^(?P<level>#{1,6})\s+(?P<text>.+?)\s*#*\s*$")
_FIELD_RE = re.compile(r"^\s*[-*]\s+\*\*(?P<label>[^*]+?):?\*\*:?\s*(?P<value>.*)$")
_BULLET_RE = re.compile(r"^\s*(?:[-*]|\d+[.)])\s+(?P<value>.+)$")
_BRACKET_RE = re.compile(r"^\[(?P<sev>[^\]]+)\]\s*(?P<title>.*)$")

_FIELD_NAMES = {
    "location": "location",
    "file": "location",
    "where": "location",
    "description": "description",
    "issue": "description",
    "problem": "description",
    "fix": "suggested_fix",
    "suggested fix": "suggested_fix",
    "suggestion": "suggested_fix",
    "recommendation": "suggested_fix",
    "rule": "rule_ref",
    "wcag": "rule_ref",
    "reference": "rule_ref",
    "wcag criterion": "rule_ref",
    "severity": "severity",
}


_BUCKET_WORDS = {"issues", "issue", "findings", "finding", "priority", "severity"}


def _bucket_severity(text: str) -> Optional[Severity]:
    """Severity of a bucket heading such as "🔴 Critical Issues" or "High Priority"."""
    tokens = re.sub(r"[^a-z]+", " ", text.lower()).split()
    hits = {_SEVERITY_WORDS[t] for t in tokens if t in _SEVERITY_WORDS}
    rest = [t for t in tokens if t not in _SEVERITY_WORDS]
    if len(hits) == 1 and rest and all(t in _BUCKET_WORDS for t in rest):
        return hits.pop()
    return None


def _split_heading(text: str) -> Optional[Tuple[Severity, str]]:
    """Severity and title from "🔴 Critical: Title" or "[High] Title"; None otherwise."""
    text = text.strip()
    m = _BRACKET_RE.match(text)
    if m:
        sev = _try_severity(m.group("sev"))
        if sev is not None:
            return sev, m.group("title").strip(" :-–—")
    head, sep, title = text.partition(":")
    if sep:
        sev = _try_severity(head)
        if sev is not None:
            return sev, title.strip()
    sev = _try_severity(text)
    if sev is not None:
        return sev, ""
    return None


def _from_markdown(text: str) -> Tuple[List[Dict[str, Any]], List[str]]:
    findings: List[Dict[str, Any]] = []
    recommendations: List[str] = []
    current: Optional[Dict[str, Any]] = None
    last_field: Optional[str] = None
    in_recommendations = False
    saw_heading = False
    in_fence = False
    bucket: Optional[Tuple[int, Severity]] = None

    for line in text.splitlines():
        if line.strip().startswith("```"):
            in_fence = not in_fence
            if current is not None and last_field:
                current[last_field] = f"{current.get(last_field, '')}\n{line}".strip("\n")
            continue
        if in_fence:
            if current is not None and last_field:
                current[last_field] = f"{current.get(last_field, '')}\n{line}"
            continue

        h = _HEADING_RE.match(line)
        if h:
            saw_heading = True
            current, last_field = None, None
            level, heading = len(h.group("level")), h.group("text")
            if bucket is not None and level <= bucket[0]:
                bucket = None
            in_recommendations = "recommendation" in heading.lower()
            if in_recommendations:
                continue
            bucket_sev = _bucket_severity(heading)
            if bucket_sev is not None:
                bucket = (level, bucket_sev)
                continue
            split = _split_heading(heading)
            if split is None and bucket is not None:
                split = (bucket[1], heading.strip())
            if split is not None:
                sev, title = split
                current = {"severity": sev.value, "title": title}
                findings.append(current)
            continue

        if in_recommendations:
            b = _BULLET_RE.match(line)
            if b:
                recommendations.append(b.group("value").strip())
            continue

        if current is None:
            continue
        f = _FIELD_RE.match(line)
        if f:
            name = _FIELD_NAMES.get(f.group("label").strip().lower())
            if name is not None:
                value = f.group("value").strip().strip("`") if name == "location" else f.group("value").strip()
                current[name] = value
                last_field = name
                continue
        if line.strip():
            target = last_field or "description"
            current[target] = f"{current.get(target, '')}\n{line.strip()}".strip()
            last_field = target

    if not saw_heading:
        raise MalformedFinding("Backend reply is neither JSON nor a Markdown report")
    return findings, recommendations


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────
def no_issue_phrases(template: Template) -> Tuple[str, ...]:
    return tuple(dict.fromkeys([*template.no_issues, *DEFAULT_NO_ISSUES]))


def _to_finding(data: Dict[str, Any], index: int, template: Template) -> Finding:
    severity = coerce_severity(data.get("severity"))
    description = str(data.get("description") or "").strip()
    title = str(data.get("title") or "").strip()
    if not description:
        description = title
    if not description:
        raise MalformedFinding(f"Finding #{index} has no description", template=template.ref)
    location = str(data.get("location") or "").strip() or None
    if location is None and template.requires_location:
        raise MalformedFinding(f"Finding #{index} ({title or description[:40]!r}) has no location", template=template.ref)
    return Finding(
        severity=severity,
        location=location,
        description=description,
        suggested_fix=str(data.get("suggested_fix") or "").strip(),
        rule_ref=str(data.get("rule_ref") or "").strip() or None,
        title=title,
    )


def normalize_reply(
    raw: str,
    template: Template,
    *,
    files_analyzed: int = 0,
    created: _dt.date | None = None,
) -> Report:
    """
    Turn a raw backend reply into a Report for *template*.

    Raises MalformedFinding when the reply cannot be mapped onto the schema.
    """
    text = (raw or "").strip()
    if text in no_issue_phrases(template):
        log.info("%s: backend replied %s → empty report", template.ref, text)
        return Report.build(domain=template.domain, template=template.name, files_analyzed=files_analyzed, created=created)
    if not text:
        raise MalformedFinding("Backend reply is empty", template=template.ref)

    payload = _extract_json(text)
    if payload is not None and isinstance(payload, (dict, list)):
        raw_findings, recommendations, reported = _from_payload(payload)
        if reported is not None:
            files_analyzed = reported
    elif _looks_like_json(text):
        raise MalformedFinding("Backend reply looks like JSON but does not parse", template=template.ref)
    else:
        raw_findings, recommendations = _from_markdown(text)

    findings = [_to_finding(item, i, template) for i, item in enumerate(raw_findings, 1)]
    report = Report.build(
        domain=template.domain,
        template=template.name,
        findings=findings,
        recommendations=recommendations,
        files_analyzed=files_analyzed,
        created=created,
    )
    log.info(
        "%s: normalised %d finding(s) | %s",
        template.ref,
        len(report.findings),
        ", ".join(f"{s.value}={n}" for s, n in report.summary.counts.items()),
    )
    return report


__all__ = ["SCHEMA", "coerce_severity", "normalize_reply", "no_issue_phrases", "DEFAULT_NO_ISSUES"]
