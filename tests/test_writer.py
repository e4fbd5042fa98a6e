#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Report Writer tests
===============================================================================

* Naming: summary-<domain>-<date>.md plus a same‑stem findings folder.
* A second report on the same day never replaces the first (-2, -3, …).
* Findings are written Critical → High → Medium → Low.
* Failures leave no partial artifacts and no staging directories.
"""
from __future__ import annotations

import datetime as dt
import errno
import logging
import os
from pathlib import Path

import pytest

from prompt_review.errors import ReportWriteError
from prompt_review.models import Finding, Report, Severity
from prompt_review.writer import ReportWriter, finding_filename, slugify

log = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

DAY = dt.date(2024, 3, 9)


def _report(*severities: Severity) -> Report:
    findings = [
        Finding(
            severity=sev,
            location=f"src/app.html:{i}",
            description=f"{sev.value} problem number {i}",
            suggested_fix="Do the right thing.",
            title=f"{sev.value} issue {i}",
        )
        for i, sev in enumerate(severities, 1)
    ]
    return Report.build(
        domain="html",
        template="accessibility-check",
        findings=findings,
        recommendations=["Add automated checks."],
        files_analyzed=2,
        created=DAY,
    )


def _visible(out: Path) -> list[str]:
    """Everything under *out* relative to it, staging excluded."""
    return sorted(str(p.relative_to(out)) for p in out.rglob("*"))


# =============================================================================
# Naming & content
# =============================================================================
def test_slugify() -> None:
    assert slugify("Image without `alt` (logo)!") == "image-without-alt-logo"
    assert slugify("!!!") == "finding"
    assert len(slugify("x" * 200)) <= 48


def test_write_creates_summary_and_finding_files(tmp_path: Path) -> None:
    report = _report(Severity.LOW, Severity.CRITICAL, Severity.MEDIUM, Severity.HIGH)
    written = ReportWriter(tmp_path).write(report)
    log.info("Written: %s", written)

    assert written.summary_path == tmp_path / "summary-html-2024-03-09.md"
    assert written.findings_dir == tmp_path / "summary-html-2024-03-09"
    assert [p.name for p in written.finding_paths] == [
        "finding-001-critical-issue-2.md",
        "finding-002-high-issue-4.md",
        "finding-003-medium-issue-3.md",
        "finding-004-low-issue-1.md",
    ]
    assert all(p.is_file() for p in written.finding_paths)

    summary = written.summary_path.read_text(encoding="utf-8")
    assert "| Files analyzed | 2 |" in summary
    assert "| 🔴 Critical | 1 |" in summary
    assert "| Total findings | 4 |" in summary
    order = [summary.index(f"{s.value} issue") for s in (Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW)]
    assert order == sorted(order)
    assert "(summary-html-2024-03-09/finding-001-critical-issue-2.md)" in summary
    assert "- Add automated checks." in summary

    detail = written.finding_paths[0].read_text(encoding="utf-8")
    assert detail.startswith("# Finding 001: Critical issue 2")
    assert "`src/app.html:2`" in detail
    assert "Do the right thing." in detail


def test_empty_report_writes_summary_only(tmp_path: Path) -> None:
    written = ReportWriter(tmp_path).write(_report())
    assert written.findings_dir is None
    assert written.finding_paths == ()
    assert _visible(tmp_path) == ["summary-html-2024-03-09.md"]
    text = written.summary_path.read_text(encoding="utf-8")
    assert "No issues found." in text
    assert "| Total findings | 0 |" in text


def test_finding_filename_is_zero_padded() -> None:
    f = Finding(Severity.LOW, "a:1", "desc", title="Tiny thing")
    assert finding_filename(7, f) == "finding-007-tiny-thing.md"


# =============================================================================
# No clobbering
# =============================================================================
def test_same_day_reports_get_distinct_names(tmp_path: Path) -> None:
    writer = ReportWriter(tmp_path)
    first = writer.write(_report(Severity.HIGH))
    second = writer.write(_report(Severity.LOW))
    third = writer.write(_report())

    assert first.summary_path.name == "summary-html-2024-03-09.md"
    assert second.summary_path.name == "summary-html-2024-03-09-2.md"
    assert third.summary_path.name == "summary-html-2024-03-09-3.md"
    assert "High issue 1" in first.summary_path.read_text(encoding="utf-8")
    assert second.findings_dir == tmp_path / "summary-html-2024-03-09-2"
    assert "summary-html-2024-03-09-2/finding-001" in second.summary_path.read_text(encoding="utf-8")


def test_overwrite_replaces_todays_report(tmp_path: Path) -> None:
    writer = ReportWriter(tmp_path)
    writer.write(_report(Severity.HIGH, Severity.LOW))
    written = writer.write(_report(Severity.MEDIUM), overwrite=True)

    assert written.summary_path.name == "summary-html-2024-03-09.md"
    assert _visible(tmp_path) == [
        "summary-html-2024-03-09",
        "summary-html-2024-03-09.md",
        "summary-html-2024-03-09/finding-001-medium-issue-1.md",
    ]


def test_name_taken_concurrently_moves_to_next_suffix(tmp_path: Path, monkeypatch) -> None:
    real_link = os.link
    calls = {"n": 0}

    def racing_link(src, dst, *args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            Path(dst).write_text("published by someone else", encoding="utf-8")
        return real_link(src, dst, *args, **kwargs)

    monkeypatch.setattr(os, "link", racing_link)
    written = ReportWriter(tmp_path).write(_report(Severity.HIGH))

    assert written.summary_path.name == "summary-html-2024-03-09-2.md"
    assert (tmp_path / "summary-html-2024-03-09.md").read_text(encoding="utf-8") == "published by someone else"
    # the folder published for the lost name was taken back
    assert not (tmp_path / "summary-html-2024-03-09").exists()
    assert (tmp_path / "summary-html-2024-03-09-2").is_dir()


# =============================================================================
# Failure atomicity
# =============================================================================
def test_failure_leaves_no_partial_report(tmp_path: Path, monkeypatch) -> None:
    def broken_link(src, dst, *args, **kwargs):
        raise OSError(errno.EIO, "simulated I/O error")

    monkeypatch.setattr(os, "link", broken_link)
    with pytest.raises(ReportWriteError):
        ReportWriter(tmp_path).write(_report(Severity.CRITICAL, Severity.LOW))
    assert _visible(tmp_path) == []


def test_failed_overwrite_keeps_previous_report(tmp_path: Path, monkeypatch) -> None:
    writer = ReportWriter(tmp_path)
    writer.write(_report(Severity.HIGH))
    before = _visible(tmp_path)

    real_replace = os.replace

    def failing_summary_replace(src, dst, *args, **kwargs):
        if str(dst).endswith(".md"):
            raise OSError(errno.ENOSPC, "disk full")
        return real_replace(src, dst, *args, **kwargs)

    monkeypatch.setattr(os, "replace", failing_summary_replace)
    with pytest.raises(ReportWriteError):
        writer.write(_report(Severity.LOW), overwrite=True)
    assert _visible(tmp_path) == before


def test_unwritable_output_dir(tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    with pytest.raises(ReportWriteError):
        ReportWriter(blocker / "reviews").write(_report())
