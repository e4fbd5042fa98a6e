#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Review ▸ Guard Evaluator
===============================================================================

A template's guard clause is an ordered list of rules, one per line of its
```guard fenced block:

    NO_HTML_PROVIDED   <- HTML is blank | Please paste the HTML you want audited.
    ACCESSIBILITY_PASS <- HTML passes accessible-html
    CONTINUE           <- DIFF matches /^diff --git/

Grammar
-------
    SENTINEL <- CONDITION [| follow-up text]

    CONDITION := always
               | KEY is absent            (slot is ABSENT)
               | KEY is blank             (ABSENT, empty or whitespace‑only)
               | KEY equals "text"        (stripped, case‑insensitive)
               | KEY matches /regex/      (re.search, multiline)
               | KEY passes check-name    (registered static check)

Evaluation
----------
The first rule whose predicate holds wins. `CONTINUE` turns a match into
`Proceed`. Every predicate other than `absent`/`blank` is false for an absent
slot, so an empty bundle can never be classified as compliant. When no rule
fired but a required placeholder is still absent, the template's no‑input
sentinel is returned.

The outcome is a tagged variant (`Proceed` | `ShortCircuit`); only `Proceed`
lets the workflow reach the renderer.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Union

from prompt_review import get_logger
from prompt_review.context import ContextBundle
from prompt_review.errors import InvariantViolation

if TYPE_CHECKING:  # pragma: no cover
    from prompt_review.templates import Template

log = get_logger(__name__)

CONTINUE = "CONTINUE"

_RULE_RE = re.compile(r"^(?P<sentinel>[A-Z][A-Z0-9_]*)\s*<-\s*(?P<rest>.+)$")
_COND_RE = re.compile(
    r"""^(?:
        (?P<always>always)
      | (?P<key>[A-Z][A-Z0-9_]*)\s+(?:
            is\s+(?P<state>absent|blank)
          | equals\s+"(?P<text>[^"]*)"
          | matches\s+/(?P<rx>.+)/
          | passes\s+(?P<check>[a-z][a-z0-9-]*)
        )
    )\s*(?:\|\s*(?P<follow>.*))?$""",
    re.VERBOSE,
)


# ─────────────────────────────────────────────────────────────────────────────
# Static checks (`KEY passes check-name`)
# ─────────────────────────────────────────────────────────────────────────────
CHECKS: Dict[str, Callable[[str], bool]] = {}


def register_check(name: str) -> Callable[[Callable[[str], bool]], Callable[[str], bool]]:
    def _wrap(fn: Callable[[str], bool]) -> Callable[[str], bool]:
        CHECKS[name] = fn
        return fn

    return _wrap


_VOID_TAGS = {
    "area", "base", "br", "col", "embed", "hr", "img", "input", "link",
    "meta", "param", "source", "track", "wbr", "!doctype",
}
_OPTIONAL_END = {"p", "li", "dt", "dd", "tr", "td", "th", "option", "thead", "tbody", "tfoot", "colgroup"}
_UNLABELLED_INPUT_TYPES = {"hidden", "submit", "reset", "button"}


class _A11yScanner(HTMLParser):
    """Collects the facts `accessible-html` needs in one pass."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.elements = 0
        self.html_lang: Optional[bool] = None
        self.problems: List[str] = []
        self.label_for: set[str] = set()
        self.controls: List[tuple[Optional[str], bool]] = []  # (id, inside/aria labelled)
        self.stack: List[str] = []
        self.label_depth = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, Optional[str]]]) -> None:
        a = {k: (v or "") for k, v in attrs}
        self.elements += 1
        if tag == "html":
            self.html_lang = bool(a.get("lang", "").strip())
        elif tag == "img" and "alt" not in a:
            self.problems.append("img without alt")
        elif tag == "label":
            self.label_depth += 1
            if a.get("for"):
                self.label_for.add(a["for"])
        elif tag in {"input", "select", "textarea"}:
            kind = a.get("type", "text").lower()
            if tag == "input" and kind in _UNLABELLED_INPUT_TYPES:
                pass
            elif tag == "input" and kind == "image":
                if not a.get("alt", "").strip():
                    self.problems.append("image input without alt")
            else:
                aria = bool(a.get("aria-label", "").strip() or a.get("aria-labelledby", "").strip())
                self.controls.append((a.get("id") or None, aria or self.label_depth > 0))
        if tag not in _VOID_TAGS:
            self.stack.append(tag)

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, Optional[str]]]) -> None:
        self.handle_starttag(tag, attrs)
        if tag not in _VOID_TAGS and self.stack and self.stack[-1] == tag:
            self.stack.pop()

    def handle_endtag(self, tag: str) -> None:
        if tag == "label" and self.label_depth:
            self.label_depth -= 1
        if tag in _VOID_TAGS:
            return
        while self.stack and self.stack[-1] != tag and self.stack[-1] in _OPTIONAL_END:
            self.stack.pop()
        if self.stack and self.stack[-1] == tag:
            self.stack.pop()
        else:
            self.problems.append(f"unexpected </{tag}>")

    def verdict(self) -> List[str]:
        problems = list(self.problems)
        if self.elements == 0:
            problems.append("no markup")
        if self.html_lang is False:
            problems.append("html without lang")
        for control_id, labelled in self.controls:
            if not labelled and (control_id is None or control_id not in self.label_for):
                problems.append(f"unlabelled control {control_id or '<anonymous>'}")
        unclosed = [t for t in self.stack if t not in _OPTIONAL_END]
        if unclosed:
            problems.append(f"unclosed <{unclosed[-1]}>")
        return problems


@register_check("accessible-html")
def is_accessible_html(markup: str) -> bool:
    """
    Trivial WCAG pass: well‑nested markup, `lang` on <html> when present,
    `alt` on every image, and a label for every form control.
    """
    scanner = _A11yScanner()
    scanner.feed(markup)
    scanner.close()
    problems = scanner.verdict()
    if problems:
        log.debug("accessible-html failed: %s", "; ".join(problems))
    return not problems


@register_check("empty-diff")
def is_empty_diff(diff: str) -> bool:
    """True when a unified diff has no added or removed lines."""
    for line in diff.splitlines():
        if line.startswith(("+++", "---")):
            continue
        if line.startswith(("+", "-")):
            return False
    return True


# ─────────────────────────────────────────────────────────────────────────────
# Rules
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class GuardRule:
    sentinel: str
    kind: str  # always | absent | blank | equals | matches | passes
    key: Optional[str] = None
    argument: Optional[str] = None
    follow_up: Optional[str] = None

    @property
    def is_continue(self) -> bool:
        return self.sentinel == CONTINUE

    @property
    def is_no_input(self) -> bool:
        return self.kind in {"absent", "blank"} and not self.is_continue

    def holds(self, bundle: ContextBundle) -> bool:
        if self.kind == "always":
            return True
        if self.key is None:
            raise ValueError(f"Guard rule for {self.sentinel} ({self.kind}) has no context key")
        absent = bundle.is_absent(self.key)
        if self.kind == "absent":
            return absent
        if self.kind == "blank":
            return absent or not bundle.value(self.key).strip()
        if absent:
            return False
        value = bundle.value(self.key)
        if self.kind == "equals":
            return value.strip().lower() == (self.argument or "").lower()
        if self.kind == "matches":
            return re.search(self.argument or "", value, re.MULTILINE) is not None
        if self.kind == "passes":
            return CHECKS[self.argument or ""](value)
        raise ValueError(f"Unknown guard kind {self.kind!r}")

    def describe(self) -> str:
        if self.kind == "always":
            return f"{self.sentinel} <- always"
        if self.kind in {"absent", "blank"}:
            return f"{self.sentinel} <- {self.key} is {self.kind}"
        if self.kind == "equals":
            return f'{self.sentinel} <- {self.key} equals "{self.argument}"'
        if self.kind == "matches":
            return f"{self.sentinel} <- {self.key} matches /{self.argument}/"
        return f"{self.sentinel} <- {self.key} passes {self.argument}"


def parse_guard_line(line: str) -> GuardRule:
    """Parse one guard line; ValueError on anything outside the grammar."""
    m = _RULE_RE.match(line.strip())
    if not m:
        raise ValueError(f"Guard line must look like 'SENTINEL <- CONDITION': {line!r}")
    cond = _COND_RE.match(m.group("rest").strip())
    if not cond:
        raise ValueError(f"Unrecognised guard condition: {m.group('rest')!r}")

    follow = (cond.group("follow") or "").strip() or None
    sentinel = m.group("sentinel")
    if cond.group("always"):
        return GuardRule(sentinel=sentinel, kind="always", follow_up=follow)

    key = cond.group("key")
    if cond.group("state"):
        return GuardRule(sentinel=sentinel, kind=cond.group("state"), key=key, follow_up=follow)
    if cond.group("text") is not None:
        return GuardRule(sentinel=sentinel, kind="equals", key=key, argument=cond.group("text"), follow_up=follow)
    if cond.group("rx") is not None:
        rx = cond.group("rx")
        try:
            re.compile(rx)
        except re.error as exc:
            raise ValueError(f"Invalid regex in guard line {line!r}: {exc}") from exc
        return GuardRule(sentinel=sentinel, kind="matches", key=key, argument=rx, follow_up=follow)

    check = cond.group("check")
    if check not in CHECKS:
        raise ValueError(f"Unknown guard check {check!r} (known: {', '.join(sorted(CHECKS))})")
    return GuardRule(sentinel=sentinel, kind="passes", key=key, argument=check, follow_up=follow)


# ─────────────────────────────────────────────────────────────────────────────
# Outcomes
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class Proceed:
    rule: Optional[GuardRule] = None


@dataclass(frozen=True)
class ShortCircuit:
    sentinel: str
    follow_up: Optional[str] = None
    rule: Optional[GuardRule] = None

    def render(self) -> str:
        """Sentinel line, then the fixed follow‑up text when there is one."""
        if self.follow_up:
            return f"{self.sentinel}\n\n{self.follow_up}"
        return self.sentinel


GuardOutcome = Union[Proceed, ShortCircuit]


def evaluate_guards(template: "Template", bundle: ContextBundle) -> GuardOutcome:
    """
    Evaluate *template*'s rules against *bundle* in declaration order.
    """
    for rule in template.guards:
        if not rule.holds(bundle):
            continue
        if rule.is_continue:
            log.debug("%s: guard %r → proceed", template.ref, rule.describe())
            return Proceed(rule)
        log.debug("%s: guard %r → %s", template.ref, rule.describe(), rule.sentinel)
        return ShortCircuit(rule.sentinel, rule.follow_up, rule)

    missing = [key for key in template.required_placeholders if bundle.is_absent(key)]
    if missing:
        fallback = template.no_input_rule
        if fallback is None:
            raise InvariantViolation(
                f"{template.ref}: required input(s) {missing} absent and no no-input rule declared",
                template=template.ref,
            )
        log.debug("%s: required input(s) %s absent → %s", template.ref, missing, fallback.sentinel)
        return ShortCircuit(fallback.sentinel, fallback.follow_up, fallback)
    return Proceed()


__all__ = [
    "CONTINUE",
    "CHECKS",
    "GuardRule",
    "GuardOutcome",
    "Proceed",
    "ShortCircuit",
    "evaluate_guards",
    "parse_guard_line",
    "register_check",
    "is_accessible_html",
    "is_empty_diff",
]
