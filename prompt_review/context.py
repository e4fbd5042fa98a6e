#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Review ▸ Context Collector
===============================================================================

Builds the `ContextBundle` a template is rendered with: a mapping from input
names (DIFF, HTML, CSS, RUBY_VERSION, ...) to a string or the `ABSENT`
sentinel.

Resolution order per requested name
-----------------------------------
1) explicit override (CLI `--context KEY=VALUE`)
2) a registered collector (git diff, version files, ...)
3) ABSENT

A collector that fails (not a git repository, unreadable file, git missing)
degrades its slot to ABSENT and the rest of the collection carries on. The
collector layer only reads; it never writes or touches the network.
"""
from __future__ import annotations

import re
import sys
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Dict, Iterable, Iterator, Mapping, Optional, TextIO, Tuple, Union

from prompt_review import get_logger
from prompt_review.errors import InputAbsent
from prompt_review.fs_utils import (
    git,
    is_git_repo,
    iter_source_files,
    language_census,
    read_text_normalized,
)

log = get_logger(__name__)

_KEY_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")
_DIFF_FILE_RE = re.compile(r"^diff --git a/(\S+) b/(\S+)", re.MULTILINE)
_PLUS_FILE_RE = re.compile(r"^\+\+\+ b/(\S+)", re.MULTILINE)


class _Absent:
    """Marker for a context slot with no value."""

    _instance: Optional["_Absent"] = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT = _Absent()

ContextValue = Union[str, _Absent]
Collector = Callable[[Path], Optional[ContextValue]]


class ContextBundle(Mapping[str, ContextValue]):
    """Read‑only mapping of input name → value or ABSENT."""

    def __init__(self, values: Mapping[str, ContextValue] | None = None) -> None:
        self._values: Dict[str, ContextValue] = {}
        for key, val in (values or {}).items():
            if val is None:
                val = ABSENT
            if not isinstance(val, (str, _Absent)):
                raise TypeError(f"context value for {key} must be str or ABSENT, got {type(val).__name__}")
            self._values[key] = val

    def __getitem__(self, key: str) -> ContextValue:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        shown = {k: (v if isinstance(v, _Absent) else f"<{len(v)} chars>") for k, v in self._values.items()}
        return f"ContextBundle({shown})"

    def is_absent(self, key: str) -> bool:
        return self._values.get(key, ABSENT) is ABSENT

    def value(self, key: str) -> str:
        """Return the string for *key*; raise InputAbsent when it has none."""
        val = self._values.get(key, ABSENT)
        if isinstance(val, _Absent):
            raise InputAbsent(key)
        return val

    def merged(self, other: Mapping[str, ContextValue]) -> "ContextBundle":
        data = dict(self._values)
        data.update(other)
        return ContextBundle(data)


# ─────────────────────────────────────────────────────────────────────────────
# Built‑in collectors
# ─────────────────────────────────────────────────────────────────────────────
def collect_diff(repo: Path) -> ContextValue:
    """Working‑tree diff against HEAD; plain `git diff` on an unborn HEAD."""
    if not is_git_repo(repo):
        return ABSENT
    res = git(repo, "diff", "HEAD")
    if res.returncode != 0:
        res = git(repo, "diff")
    if res.returncode != 0:
        log.warning("git diff failed in %s: %s", repo, res.stderr.strip())
        return ABSENT
    return res.stdout


def collect_changed_files(repo: Path) -> ContextValue:
    if not is_git_repo(repo):
        return ABSENT
    res = git(repo, "diff", "--name-only", "HEAD")
    if res.returncode != 0:
        return ABSENT
    return res.stdout.strip()


def collect_languages(repo: Path) -> ContextValue:
    files = list(iter_source_files(repo))
    if not files:
        return ABSENT
    return ", ".join(language_census(files))


def file_collector(rel_path: str, *, strip: bool = False) -> Collector:
    """Collector reading a file relative to the repository root."""

    def _collect(repo: Path) -> ContextValue:
        path = repo / rel_path
        if not path.is_file():
            return ABSENT
        text = read_text_normalized(path)
        return text.strip() if strip else text

    _collect.__name__ = f"file_collector[{rel_path}]"
    return _collect


DEFAULT_COLLECTORS: Mapping[str, Collector] = MappingProxyType(
    {
        "DIFF": collect_diff,
        "CHANGED_FILES": collect_changed_files,
        "LANGUAGES": collect_languages,
        "RUBY_VERSION": file_collector(".ruby-version", strip=True),
        "PYTHON_VERSION": file_collector(".python-version", strip=True),
        "DOCKERFILE": file_collector("Dockerfile"),
        "README": file_collector("README.md"),
    }
)


def collect_context(
    names: Iterable[str],
    collectors: Mapping[str, Collector] | None = None,
    *,
    overrides: Mapping[str, str] | None = None,
    repo: Path | None = None,
) -> ContextBundle:
    """
    Resolve every requested name into a ContextBundle.

    Override keys that were not requested are kept as well; they cost
    nothing and may feed optional placeholders.
    """
    collectors = DEFAULT_COLLECTORS if collectors is None else collectors
    overrides = dict(overrides or {})
    repo = (repo or Path.cwd()).expanduser()
    values: Dict[str, ContextValue] = {}

    for name in names:
        if name in overrides:
            values[name] = overrides[name]
            continue
        collector = collectors.get(name)
        if collector is None:
            values[name] = ABSENT
            continue
        try:
            got = collector(repo)
        except (OSError, ValueError, UnicodeError) as exc:
            log.warning("Collector for %s failed (%s); treating it as absent.", name, exc)
            got = ABSENT
        values[name] = ABSENT if got is None else got
        log.debug(
            "Collected %s via %s (%s)",
            name,
            getattr(collector, "__name__", repr(collector)),
            "absent" if values[name] is ABSENT else f"{len(values[name])} chars",
        )

    for key, val in overrides.items():
        values.setdefault(key, val)

    bundle = ContextBundle(values)
    log.debug("Context collected: %r", bundle)
    return bundle


# ─────────────────────────────────────────────────────────────────────────────
# CLI value parsing & summary helpers
# ─────────────────────────────────────────────────────────────────────────────
def parse_context_arg(arg: str, *, stdin: TextIO | None = None) -> Tuple[str, str]:
    """
    Parse one `KEY=VALUE` argument.

    `KEY=@path` reads a file (LF‑normalised); `KEY=-` reads stdin.
    Raises ValueError on a malformed key or an unreadable file.
    """
    key, sep, raw = arg.partition("=")
    key = key.strip()
    if not sep or not _KEY_RE.match(key):
        raise ValueError(f"Context must look like KEY=VALUE with an UPPER_CASE key, got {arg!r}")
    if raw == "-":
        return key, (stdin or sys.stdin).read()
    if raw.startswith("@"):
        path = Path(raw[1:]).expanduser()
        try:
            return key, read_text_normalized(path)
        except OSError as exc:
            raise ValueError(f"Cannot read context file for {key}: {path} ({exc})") from exc
    return key, raw


def count_files_analyzed(bundle: ContextBundle) -> int:
    """
    Best‑effort number of files the inputs cover: files named in a diff or in
    CHANGED_FILES, else one per present code‑like input.
    """
    files: set[str] = set()
    diff = bundle.get("DIFF")
    if isinstance(diff, str):
        files.update(b for _a, b in _DIFF_FILE_RE.findall(diff))
        files.update(p for p in _PLUS_FILE_RE.findall(diff) if p != "/dev/null")
    changed = bundle.get("CHANGED_FILES")
    if isinstance(changed, str):
        files.update(line.strip() for line in changed.splitlines() if line.strip())
    if files:
        return len(files)
    return sum(
        1
        for key, val in bundle.items()
        if isinstance(val, str) and val.strip() and key not in {"LANGUAGES", "RUBY_VERSION", "PYTHON_VERSION"}
    )


__all__ = [
    "ABSENT",
    "ContextBundle",
    "ContextValue",
    "Collector",
    "DEFAULT_COLLECTORS",
    "collect_context",
    "collect_diff",
    "collect_changed_files",
    "collect_languages",
    "file_collector",
    "parse_context_arg",
    "count_files_analyzed",
]
