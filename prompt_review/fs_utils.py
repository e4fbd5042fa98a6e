#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Review ▸ Filesystem & Git Helpers
===============================================================================

Read‑only helpers behind the built‑in context collectors:

* git(...)                 – logged wrapper around `git -C <repo> ...`
* is_git_repo(...)         – True inside a work tree
* read_text_normalized(...) – LF‑normalised UTF‑8 text (lossy on errors)
* is_binary_file(...)      – fast binary sniffing
* iter_source_files(...)   – repository walk that skips vendor/build dirs
* language_census(...)     – ["python:42", "html:3", ...]

Nothing here mutates the repository.
"""
from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import Iterator, List, Sequence

from prompt_review import get_logger

log = get_logger(__name__)

_SKIP_DIRS = {
    ".git", ".svn", ".hg", ".idea", ".vscode", ".pytest_cache",
    "__pycache__", "dist", "build", "node_modules", ".venv", "venv", ".mypy_cache",
    ".tox", ".cache", ".next", ".nuxt", "coverage", ".ruff_cache",
    "target", "htmlcov", "logs", "vendor",
}

_BINARY_EXTS = {
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".webp", ".avif",
    ".tar", ".gz", ".tgz", ".zip", ".7z", ".rar", ".xz", ".bz2", ".zst",
    ".pdf", ".woff", ".woff2", ".ttf", ".otf", ".eot",
    ".mp3", ".wav", ".mp4", ".mov", ".webm",
    ".bin", ".exe", ".dll", ".dylib", ".so", ".class", ".pyc",
}

_LANGUAGES = {
    ".py": "python", ".pyi": "python",
    ".rb": "ruby", ".erb": "ruby", ".rake": "ruby",
    ".html": "html", ".htm": "html",
    ".css": "css", ".scss": "css", ".sass": "css",
    ".js": "javascript", ".jsx": "javascript", ".mjs": "javascript",
    ".ts": "typescript", ".tsx": "typescript",
    ".go": "go", ".rs": "rust", ".java": "java", ".kt": "kotlin",
    ".php": "php", ".sh": "shell", ".bash": "shell",
    ".tf": "terraform", ".yml": "yaml", ".yaml": "yaml",
    ".json": "json", ".toml": "toml", ".sql": "sql",
    ".md": "markdown", ".rst": "rst",
}


def git(repo: Path, *args: str, check: bool = False) -> subprocess.CompletedProcess[str]:
    """
    Run `git -C <repo> <args...>` and return the CompletedProcess.

    Raises CalledProcessError when *check* is set and git exits non‑zero,
    and OSError when git itself cannot be executed.
    """
    cmd = ["git", "-C", str(repo), *args]
    log.debug("git: %s", " ".join(cmd))
    proc = subprocess.run(cmd, text=True, capture_output=True)
    if check and proc.returncode != 0:
        log.debug("git failed (rc=%s): %s", proc.returncode, proc.stderr.strip())
        proc.check_returncode()
    return proc


def is_git_repo(repo: Path) -> bool:
    try:
        res = git(repo, "rev-parse", "--is-inside-work-tree")
    except OSError:
        return False
    return res.returncode == 0 and res.stdout.strip() == "true"


def read_text_normalized(path: Path) -> str:
    """Read *path* as UTF‑8 (lossy on errors) with '\\n' line endings."""
    text = path.read_bytes().decode("utf-8", errors="replace")
    return text.replace("\r\n", "\n").replace("\r", "\n")


def is_binary_file(path: Path, sniff_bytes: int = 4096) -> bool:
    """Extension short‑circuit, then NUL / control‑character density."""
    if path.suffix.lower() in _BINARY_EXTS:
        return True
    try:
        with path.open("rb") as fh:
            chunk = fh.read(sniff_bytes)
    except OSError:
        return True
    if not chunk:
        return False
    if b"\x00" in chunk:
        return True
    ctrl = sum(1 for b in chunk if b < 32 and b not in (9, 10, 13))
    return ctrl / len(chunk) > 0.30


def iter_source_files(repo: Path) -> Iterator[Path]:
    """Yield non‑binary regular files under *repo*, skipping vendor/build dirs."""
    for root, dirs, files in os.walk(repo):
        dirs[:] = sorted(d for d in dirs if d not in _SKIP_DIRS)
        base = Path(root)
        for name in sorted(files):
            p = base / name
            if p.is_file() and not is_binary_file(p):
                yield p


def language_for(path: Path) -> str:
    if path.name == "Dockerfile" or path.name.startswith("Dockerfile."):
        return "dockerfile"
    if path.name in {"Gemfile", "Rakefile"}:
        return "ruby"
    ext = path.suffix.lower()
    return _LANGUAGES.get(ext, ext.lstrip(".") or "other")


def language_census(files: Sequence[Path]) -> List[str]:
    """
    Compact census such as ["python:42", "html:3"], by descending count then
    name.
    """
    counts: dict[str, int] = {}
    for p in files:
        lang = language_for(p)
        counts[lang] = counts.get(lang, 0) + 1
    items = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return [f"{lang}:{n}" for lang, n in items]


__all__ = [
    "git",
    "is_git_repo",
    "read_text_normalized",
    "is_binary_file",
    "iter_source_files",
    "language_for",
    "language_census",
]
