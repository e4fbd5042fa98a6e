#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Review ▸ Template Registry
===============================================================================

Templates are Markdown files laid out one directory per domain:

    templates/
      generic/pr-review.md
      html/accessibility-check.md
      python/type-hinting.md
      ...

Each file is read once and parsed into an immutable `Template`:

* `# Title` and the paragraph under it          → title / description
* `## Guard Clause` with a ```guard block        → ordered GuardRules
* `## Settings` with a ```settings block          → requires-location, no-issues
* every ```prompt block                           → instruction text
* `## Report Format` fenced block                 → report skeleton
* `## Follow-up` blockquote (+ optional ```action) → follow‑up question

Lookups are exact and case‑sensitive. An unknown (domain, name) raises
`TemplateNotFound`; there is no fuzzy fallback.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from prompt_review import get_logger
from prompt_review.errors import TemplateError, TemplateNotFound
from prompt_review.guards import GuardRule, parse_guard_line

log = get_logger(__name__)

SENTINEL_VOCABULARY = frozenset(
    {
        "NO_HTML_PROVIDED",
        "ACCESSIBILITY_PASS",
        "LGTM",
        "NO_PROJECT_CONTEXT",
        "BEM_COMPLIANT",
        "DOCUMENTATION_COMPLETE",
        "DOCKERFILE_LOOKS_GOOD",
        "NO_DIFF_PROVIDED",
        "NO_DETAILS_PROVIDED",
        "NO_CSS_PROVIDED",
        "NO_CODE_PROVIDED",
        "NO_ISSUES_FOUND",
        "CONTINUE",
    }
)

PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Z][A-Z0-9_]*)(\?)?\s*\}\}")
_FENCE_RE = re.compile(
    r"^(?P<fence>`{3,}|~{3,})(?P<info>[\w-]*)[^\n]*\n(?P<body>.*?)^(?P=fence)[ \t]*$",
    re.MULTILINE | re.DOTALL,
)
_SECTION_RE = re.compile(r"^##[ \t]+(.+?)[ \t]*$", re.MULTILINE)
_TITLE_RE = re.compile(r"^#[ \t]+(.+?)[ \t]*$", re.MULTILINE)
_TRUE = {"1", "true", "yes", "on", "y"}
_FALSE = {"0", "false", "no", "off", "n"}


@dataclass(frozen=True)
class Placeholder:
    name: str
    optional: bool = False


@dataclass(frozen=True)
class Template:
    domain: str
    name: str
    title: str
    prompt: str
    report_format: str
    placeholders: Tuple[Placeholder, ...] = ()
    guards: Tuple[GuardRule, ...] = ()
    description: str = ""
    requires_location: bool = True
    no_issues: Tuple[str, ...] = ()
    follow_up: Optional[str] = None
    next_action: Optional[str] = None
    path: Optional[Path] = field(default=None, compare=False)

    @property
    def ref(self) -> str:
        return f"{self.domain}/{self.name}"

    @property
    def placeholder_names(self) -> Tuple[str, ...]:
        return tuple(p.name for p in self.placeholders)

    @property
    def required_placeholders(self) -> Tuple[str, ...]:
        return tuple(p.name for p in self.placeholders if not p.optional)

    @property
    def no_input_rule(self) -> Optional[GuardRule]:
        """The designated "no input" rule: the first `absent`/`blank` rule."""
        return next((g for g in self.guards if g.is_no_input), None)

    @property
    def sentinels(self) -> Tuple[str, ...]:
        return tuple(g.sentinel for g in self.guards)


# ─────────────────────────────────────────────────────────────────────────────
# Parsing
# ─────────────────────────────────────────────────────────────────────────────
def _sections(text: str) -> Dict[str, str]:
    """Map lower‑cased `## heading` → body up to the next `##` heading."""
    out: Dict[str, str] = {}
    matches = list(_SECTION_RE.finditer(_strip_fenced(text)))
    for i, m in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        key = m.group(1).strip().lower().replace("‑", "-")
        out[key] = text[m.end():end]
    return out


def _strip_fenced(text: str) -> str:
    """Blank out fenced block bodies (same length) so headings inside them are ignored."""
    return _FENCE_RE.sub(lambda m: re.sub(r"[^\n]", " ", m.group(0)), text)


def _fenced(text: str, info: Optional[str] = None) -> List[str]:
    return [
        m.group("body").rstrip("\n")
        for m in _FENCE_RE.finditer(text)
        if info is None or m.group("info").lower() == info
    ]


def _section(sections: Mapping[str, str], *names: str) -> str:
    for name in names:
        if name in sections:
            return sections[name]
    return ""


def _parse_bool(raw: str, *, where: str) -> bool:
    val = raw.strip().lower()
    if val in _TRUE:
        return True
    if val in _FALSE:
        return False
    raise TemplateError(f"{where}: expected a boolean, got {raw!r}")


def _placeholders(prompt: str) -> Tuple[Placeholder, ...]:
    order: List[str] = []
    required: Dict[str, bool] = {}
    for m in PLACEHOLDER_RE.finditer(prompt):
        name, optional = m.group(1), bool(m.group(2))
        if name not in required:
            order.append(name)
            required[name] = not optional
        elif not optional:
            required[name] = True
    return tuple(Placeholder(n, optional=not required[n]) for n in order)


def parse_template(text: str, *, domain: str, name: str, path: Optional[Path] = None) -> Template:
    """
    Parse one template document. Raises TemplateError when the file cannot
    drive an invocation (no prompt, no report format, bad guard line, or
    required inputs without a no‑input rule).
    """
    where = str(path) if path else f"{domain}/{name}"
    body = _strip_fenced(text)
    title_m = _TITLE_RE.search(body)
    title = title_m.group(1) if title_m else name.replace("-", " ").title()

    first_section = _SECTION_RE.search(body)
    intro_start = title_m.end() if title_m else 0
    intro_end = first_section.start() if first_section else len(text)
    description = text[intro_start:intro_end].strip() if intro_end > intro_start else ""

    sections = _sections(text)

    prompt_blocks = _fenced(text, "prompt")
    if not prompt_blocks:
        raise TemplateError(f"{where}: no ```prompt block found")
    prompt = "\n\n".join(block.strip("\n") for block in prompt_blocks)

    report_blocks = _fenced(_section(sections, "report format"))
    if not report_blocks:
        raise TemplateError(f"{where}: '## Report Format' needs a fenced skeleton")
    report_format = report_blocks[0]

    guards: List[GuardRule] = []
    for block in _fenced(text, "guard"):
        for raw in block.splitlines():
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            try:
                rule = parse_guard_line(line)
            except ValueError as exc:
                raise TemplateError(f"{where}: {exc}") from exc
            if rule.sentinel not in SENTINEL_VOCABULARY:
                log.warning("%s: sentinel %s is not in the known vocabulary", where, rule.sentinel)
            guards.append(rule)

    requires_location = True
    no_issues: List[str] = []
    for block in _fenced(text, "settings"):
        for raw in block.splitlines():
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            key, sep, value = line.partition(":")
            if not sep:
                raise TemplateError(f"{where}: settings line must be 'key: value', got {line!r}")
            key = key.strip().lower()
            if key == "requires-location":
                requires_location = _parse_bool(value, where=where)
            elif key == "no-issues":
                no_issues.extend(p.strip() for p in value.split(",") if p.strip())
            else:
                raise TemplateError(f"{where}: unknown setting {key!r}")

    follow_section = _section(sections, "follow-up", "follow up", "followup")
    quoted = [ln.lstrip()[1:].strip() for ln in follow_section.splitlines() if ln.lstrip().startswith(">")]
    follow_up = " ".join(q for q in quoted if q) or None
    actions = _fenced(follow_section, "action")
    next_action = actions[0].strip() if actions else None

    placeholders = _placeholders(prompt)
    tpl = Template(
        domain=domain,
        name=name,
        title=title,
        description=description,
        prompt=prompt,
        report_format=report_format,
        placeholders=placeholders,
        guards=tuple(guards),
        requires_location=requires_location,
        no_issues=tuple(no_issues),
        follow_up=follow_up,
        next_action=next_action,
        path=path,
    )
    if tpl.required_placeholders and tpl.no_input_rule is None:
        raise TemplateError(
            f"{where}: required inputs {list(tpl.required_placeholders)} need an "
            "'is absent' or 'is blank' guard rule"
        )
    return tpl


def load_template(path: Path, *, domain: Optional[str] = None) -> Template:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise TemplateError(f"Cannot read template {path}: {exc}") from exc
    return parse_template(text, domain=domain or path.parent.name, name=path.stem, path=path)


# ─────────────────────────────────────────────────────────────────────────────
# Registry
# ─────────────────────────────────────────────────────────────────────────────
def _scan(root: Path) -> Dict[Tuple[str, str], Template]:
    if not root.is_dir():
        raise TemplateError(f"Template directory not found: {root}")
    found: Dict[Tuple[str, str], Template] = {}
    for domain_dir in sorted(p for p in root.iterdir() if p.is_dir() and not p.name.startswith((".", "_"))):
        for path in sorted(domain_dir.glob("*.md")):
            if path.name.startswith("_") or path.stem.lower() == "readme":
                continue
            tpl = load_template(path, domain=domain_dir.name)
            found[(tpl.domain, tpl.name)] = tpl
    return found


class TemplateRegistry:
    """
    Immutable (domain, name) → Template map, shared read‑only by every
    invocation in the process. `reload()` swaps in a freshly scanned map.
    """

    def __init__(self, templates: Mapping[Tuple[str, str], Template], *, root: Optional[Path] = None) -> None:
        self._templates: Mapping[Tuple[str, str], Template] = MappingProxyType(dict(templates))
        self.root = root

    @classmethod
    def load(cls, root: Path) -> "TemplateRegistry":
        root = Path(root).expanduser()
        templates = _scan(root)
        log.info("Loaded %d template(s) from %s", len(templates), root)
        return cls(templates, root=root)

    @classmethod
    def from_templates(cls, templates: Sequence[Template]) -> "TemplateRegistry":
        return cls({(t.domain, t.name): t for t in templates})

    def reload(self) -> None:
        if self.root is None:
            raise TemplateError("Registry was not loaded from a directory; nothing to reload")
        self._templates = MappingProxyType(_scan(self.root))
        log.info("Reloaded %d template(s) from %s", len(self._templates), self.root)

    def lookup(self, domain: str, name: str) -> Template:
        try:
            return self._templates[(domain, name)]
        except KeyError:
            raise TemplateNotFound(domain, name) from None

    def lookup_ref(self, ref: str) -> Template:
        """Lookup by "domain/name"."""
        domain, sep, name = ref.partition("/")
        if not sep or not domain or not name:
            raise TemplateNotFound(ref, "")
        return self.lookup(domain, name)

    def domains(self) -> List[str]:
        return sorted({d for d, _ in self._templates})

    def list(self, domain: Optional[str] = None) -> List[Template]:
        return [t for key, t in sorted(self._templates.items()) if domain is None or key[0] == domain]

    def __iter__(self) -> Iterator[Template]:
        return iter(self.list())

    def __len__(self) -> int:
        return len(self._templates)

    def __contains__(self, key: object) -> bool:
        return key in self._templates


__all__ = [
    "SENTINEL_VOCABULARY",
    "PLACEHOLDER_RE",
    "Placeholder",
    "Template",
    "TemplateRegistry",
    "parse_template",
    "load_template",
]
