#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Review ▸ Report Writer
===============================================================================

Layout
------
    <out>/summary-<domain>-<YYYY-MM-DD>.md            summary + findings index
    <out>/summary-<domain>-<YYYY-MM-DD>/              only when findings > 0
        finding-001-<slug>.md
        finding-002-<slug>.md

A second report for the same domain and day becomes
`summary-<domain>-<YYYY-MM-DD>-2.md` (then -3, ...) unless `overwrite=True`.

Guarantees
----------
* Everything is rendered into a staging directory inside <out> first.
* The findings folder is moved into place before the summary, so a visible
  summary always has its folder.
* Without overwrite the summary is published with a hard link, which fails
  instead of clobbering a file another process published meanwhile.
* On any OSError the published pieces of this attempt are removed and
  `ReportWriteError` is raised; the staging directory is always cleaned up.
"""
from __future__ import annotations

import errno
import os
import re
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from prompt_review import get_logger
from prompt_review.errors import ReportWriteError
from prompt_review.models import SEVERITY_ORDER, Finding, Report

log = get_logger(__name__)

MAX_SUFFIX = 999
_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(text: str, max_len: int = 48) -> str:
    slug = _SLUG_RE.sub("-", text.lower()).strip("-")
    if len(slug) > max_len:
        slug = slug[:max_len].rstrip("-")
    return slug or "finding"


def _cell(text: Optional[str]) -> str:
    if not text:
        return "–"
    return " ".join(str(text).split()).replace("|", "\\|")


@dataclass(frozen=True)
class WrittenReport:
    summary_path: Path
    findings_dir: Optional[Path] = None
    finding_paths: Tuple[Path, ...] = ()


# ─────────────────────────────────────────────────────────────────────────────
# Markdown rendering
# ─────────────────────────────────────────────────────────────────────────────
def finding_filename(index: int, finding: Finding) -> str:
    return f"finding-{index:03d}-{slugify(finding.heading)}.md"


def render_finding(index: int, finding: Finding, report: Report) -> str:
    lines = [
        f"# Finding {index:03d}: {finding.heading}",
        "",
        "| Field | Value |",
        "|-------|-------|",
        f"| Severity | {finding.severity.marker} {finding.severity.value} |",
        f"| Location | {_cell(f'`{finding.location}`' if finding.location else None)} |",
    ]
    if finding.rule_ref:
        lines.append(f"| Rule | {_cell(finding.rule_ref)} |")
    lines += [
        f"| Template | {report.domain}/{report.template} |",
        f"| Date | {report.created.isoformat()} |",
        "",
        "## Description",
        "",
        finding.description.strip(),
        "",
        "## Suggested Fix",
        "",
        finding.suggested_fix.strip() or "_No fix suggested._",
        "",
    ]
    return "\n".join(lines)


def render_summary(report: Report, *, stem: str, finding_names: List[str]) -> str:
    lines = [
        f"# Review Summary: {report.domain}/{report.template}",
        "",
        f"**Date:** {report.created.isoformat()}  ",
        f"**Template:** `{report.domain}/{report.template}`",
        "",
        "## Summary",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Files analyzed | {report.summary.files_analyzed} |",
    ]
    for sev in SEVERITY_ORDER:
        lines.append(f"| {sev.marker} {sev.value} | {report.summary.counts.get(sev, 0)} |")
    lines += [f"| Total findings | {report.summary.total} |", "", "## Findings", ""]

    if report.findings:
        lines += ["| # | Severity | Location | Finding |", "|---|----------|----------|---------|"]
        for i, (finding, name) in enumerate(zip(report.findings, finding_names), 1):
            loc = f"`{finding.location}`" if finding.location else None
            lines.append(
                f"| {i:03d} | {finding.severity.marker} {finding.severity.value} | {_cell(loc)} "
                f"| [{_cell(finding.heading)}]({stem}/{name}) |"
            )
    else:
        lines.append("No issues found.")

    if report.recommendations:
        lines += ["", "## Recommendations", ""]
        lines += [f"- {rec}" for rec in report.recommendations]
    lines.append("")
    return "\n".join(lines)


# ─────────────────────────────────────────────────────────────────────────────
# Writer
# ─────────────────────────────────────────────────────────────────────────────
class _NameTaken(Exception):
    """A concurrent writer published the same stem first."""


class ReportWriter:
    """Persists Reports under *out_dir* without ever exposing a partial one."""

    def __init__(self, out_dir: Path) -> None:
        self.out_dir = Path(out_dir).expanduser()

    def base_stem(self, report: Report) -> str:
        return f"summary-{report.domain}-{report.created.isoformat()}"

    def _stems(self, report: Report, overwrite: bool):
        base = self.base_stem(report)
        yield base
        if overwrite:
            return
        for n in range(2, MAX_SUFFIX + 1):
            yield f"{base}-{n}"

    def _taken(self, stem: str) -> bool:
        return (self.out_dir / f"{stem}.md").exists() or (self.out_dir / stem).exists()

    def write(self, report: Report, *, overwrite: bool = False) -> WrittenReport:
        try:
            self.out_dir.mkdir(parents=True, exist_ok=True)
            staging = Path(tempfile.mkdtemp(prefix=".staging-", dir=self.out_dir))
        except OSError as exc:
            raise ReportWriteError(f"Cannot prepare output directory {self.out_dir}: {exc}") from exc

        try:
            for stem in self._stems(report, overwrite):
                if not overwrite and self._taken(stem):
                    continue
                try:
                    written = self._publish(report, stem, staging, overwrite=overwrite)
                except _NameTaken:
                    log.debug("Report name %s taken concurrently; trying the next suffix.", stem)
                    continue
                log.info(
                    "Report written: %s (%d finding file(s))",
                    written.summary_path,
                    len(written.finding_paths),
                )
                return written
            raise ReportWriteError(f"No free report name left for {self.base_stem(report)}")
        except OSError as exc:
            log.error("Report write failed in %s: %s", self.out_dir, exc)
            raise ReportWriteError(f"Failed to write report into {self.out_dir}: {exc}") from exc
        finally:
            shutil.rmtree(staging, ignore_errors=True)

    def _publish(self, report: Report, stem: str, staging: Path, *, overwrite: bool) -> WrittenReport:
        attempt = Path(tempfile.mkdtemp(prefix=f"{stem}-", dir=staging))
        names = [finding_filename(i, f) for i, f in enumerate(report.findings, 1)]

        staged_folder = attempt / stem
        if report.findings:
            staged_folder.mkdir()
            for i, (finding, name) in enumerate(zip(report.findings, names), 1):
                (staged_folder / name).write_text(render_finding(i, finding, report), encoding="utf-8")
        staged_summary = attempt / f"{stem}.md"
        staged_summary.write_text(render_summary(report, stem=stem, finding_names=names), encoding="utf-8")

        summary_path = self.out_dir / f"{stem}.md"
        folder_path = self.out_dir / stem
        published_folder = False
        previous: Optional[Path] = None
        try:
            if overwrite and folder_path.exists():
                previous = attempt / "previous"
                os.replace(folder_path, previous)
            if report.findings:
                try:
                    os.rename(staged_folder, folder_path)
                except OSError as exc:
                    if exc.errno in (errno.EEXIST, errno.ENOTEMPTY):
                        raise _NameTaken(stem) from exc
                    raise
                published_folder = True
            if overwrite:
                os.replace(staged_summary, summary_path)
            else:
                try:
                    os.link(staged_summary, summary_path)
                except FileExistsError as exc:
                    raise _NameTaken(stem) from exc
        except BaseException:
            if published_folder:
                shutil.rmtree(folder_path, ignore_errors=True)
            if previous is not None and not folder_path.exists():
                os.replace(previous, folder_path)
            raise

        return WrittenReport(
            summary_path=summary_path,
            findings_dir=folder_path if report.findings else None,
            finding_paths=tuple(folder_path / n for n in names),
        )


__all__ = ["ReportWriter", "WrittenReport", "render_summary", "render_finding", "finding_filename", "slugify"]
