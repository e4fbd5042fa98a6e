#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Invocation workflow tests (bundled templates, offline backends)
===============================================================================

End‑to‑end scenarios:

* `{HTML: ""}` for html/accessibility-check → NO_HTML_PROVIDED + follow‑up
  text, the renderer is never called and nothing is written.
* A diff adding an <img> without alt for generic/pr-review → one High
  finding at the changed line, not LGTM.
* A zero‑finding reply → empty report written, follow‑up skipped.
* Backend timeout / malformed reply → nothing written.
* Several templates in one batch.
"""
from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import pytest

import prompt_review.workflow as workflow
from conftest import RecordingBackend, SlowBackend
from prompt_review.context import ContextBundle
from prompt_review.errors import BackendTimeout, MalformedFinding, TemplateNotFound
from prompt_review.followup import FollowUpChoice, FollowUpDispatcher, fixed_answer
from prompt_review.guards import Proceed, ShortCircuit
from prompt_review.models import Severity
from prompt_review.templates import parse_template
from prompt_review.workflow import (
    Invocation,
    InvocationConfig,
    InvocationState,
    input_names,
    run_batch,
    run_template,
)

log = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

S = InvocationState

_IMG_DIFF = """\
diff --git a/index.html b/index.html
index 3b18e51..a9c2f0d 100644
--- a/index.html
+++ b/index.html
@@ -9,4 +9,5 @@
 <body>
   <header>
+    <img src="logo.png">
     <h1>ACME</h1>
   </header>
"""

_PR_REPLY = json.dumps(
    {
        "findings": [
            {
                "severity": "High",
                "title": "Logo image has no alt attribute",
                "location": "index.html:11",
                "description": "The added <img> has no text alternative (WCAG 1.1.1).",
                "suggested_fix": '<img src="logo.png" alt="ACME">',
                "rule_ref": "WCAG 1.1.1",
            }
        ],
        "recommendations": [],
    }
)


def _config(tmp_path: Path, **kw) -> InvocationConfig:
    return InvocationConfig(out_dir=tmp_path / "reviews", repo=tmp_path, **kw)


def _run(inv: Invocation):
    return asyncio.run(inv.run())


def _files(out: Path) -> list:
    return sorted(p.name for p in out.rglob("*")) if out.exists() else []


# =============================================================================
# Guard short‑circuits
# =============================================================================
def test_empty_html_short_circuits_without_rendering(registry, tmp_path: Path, monkeypatch) -> None:
    def _never(*_a, **_k):
        raise AssertionError("renderer must not run on a short-circuit")

    monkeypatch.setattr(workflow, "render", _never)
    backend = RecordingBackend("unused")
    tpl = registry.lookup("html", "accessibility-check")
    inv = Invocation(tpl, backend, config=_config(tmp_path), overrides={"HTML": ""}, collectors={})
    result = _run(inv)

    log.info("Console:\n%s", result.console_text())
    assert result.short_circuited
    assert result.console_text() == (
        "NO_HTML_PROVIDED\n\nPlease paste the HTML markup you want audited for accessibility."
    )
    assert inv.history == (S.COLLECTING, S.GUARDING, S.DONE)
    assert backend.prompts == []
    assert _files(tmp_path / "reviews") == []


def test_accessible_html_is_reported_as_pass(registry, tmp_path: Path) -> None:
    html = '<html lang="en"><body><img src="a.png" alt="A"></body></html>'
    tpl = registry.lookup("html", "accessibility-check")
    result = _run(Invocation(tpl, RecordingBackend("unused"), config=_config(tmp_path), overrides={"HTML": html}, collectors={}))
    assert isinstance(result.outcome, ShortCircuit)
    assert result.console_text() == "ACCESSIBILITY_PASS"
    assert result.written is None


def test_missing_diff_gives_no_diff_sentinel(registry, tmp_path: Path) -> None:
    tpl = registry.lookup("generic", "pr-review")
    result = _run(Invocation(tpl, RecordingBackend("unused"), config=_config(tmp_path), collectors={}))
    assert result.outcome.sentinel == "NO_DIFF_PROVIDED"


# =============================================================================
# Full invocations
# =============================================================================
def test_pr_review_img_without_alt(registry, tmp_path: Path) -> None:
    backend = RecordingBackend(_PR_REPLY)
    tpl = registry.lookup("generic", "pr-review")
    inv = Invocation(
        tpl,
        backend,
        config=_config(tmp_path),
        overrides={"DIFF": _IMG_DIFF},
        collectors={},
        dispatcher=FollowUpDispatcher(fixed_answer(FollowUpChoice.PROCEED)),
    )
    result = _run(inv)
    log.info("Console:\n%s", result.console_text())

    assert not result.short_circuited
    assert inv.history == (
        S.COLLECTING, S.GUARDING, S.RENDERING, S.AWAITING_BACKEND,
        S.NORMALIZING, S.WRITING, S.AWAITING_FOLLOW_UP, S.DONE,
    )
    assert len(backend.prompts) == 1
    sent = backend.prompts[0].as_text()
    assert '+    <img src="logo.png">' in sent
    assert "(not provided)" in sent  # CHANGED_FILES / LANGUAGES had no collector

    report = result.report
    assert report is not None and len(report.findings) == 1
    finding = report.findings[0]
    assert finding.severity is Severity.HIGH
    assert finding.location == "index.html:11"
    assert report.summary.files_analyzed == 1
    assert "LGTM" not in result.console_text()

    assert result.written is not None and result.written.summary_path.is_file()
    assert len(result.written.finding_paths) == 1
    assert result.follow_up is FollowUpChoice.PROCEED
    assert result.next_action is not None and '<img src="logo.png">' in result.next_action


def test_zero_finding_reply_writes_empty_report(registry, tmp_path: Path) -> None:
    asked = []
    dispatcher = FollowUpDispatcher(lambda q: asked.append(q) or "yes")
    tpl = registry.lookup("generic", "pr-review")
    inv = Invocation(
        tpl,
        RecordingBackend("LGTM"),
        config=_config(tmp_path),
        overrides={"DIFF": _IMG_DIFF},
        collectors={},
        dispatcher=dispatcher,
    )
    result = _run(inv)

    assert result.report is not None and result.report.findings == []
    assert all(n == 0 for n in result.report.summary.counts.values())
    assert result.written is not None and result.written.findings_dir is None
    assert inv.history[-2:] == (S.WRITING, S.DONE)
    assert asked == []


def test_no_follow_up_when_disabled(registry, tmp_path: Path) -> None:
    asked = []
    tpl = registry.lookup("generic", "pr-review")
    result = _run(
        Invocation(
            tpl,
            RecordingBackend(_PR_REPLY),
            config=_config(tmp_path, ask_follow_up=False),
            overrides={"DIFF": _IMG_DIFF},
            collectors={},
            dispatcher=FollowUpDispatcher(lambda q: asked.append(q) or "yes"),
        )
    )
    assert result.follow_up is None and asked == []


# =============================================================================
# Failures
# =============================================================================
def test_backend_timeout_writes_nothing(registry, tmp_path: Path) -> None:
    tpl = registry.lookup("generic", "pr-review")
    inv = Invocation(
        tpl,
        SlowBackend(),
        config=_config(tmp_path, timeout_s=0.05),
        overrides={"DIFF": _IMG_DIFF},
        collectors={},
    )
    with pytest.raises(BackendTimeout) as exc:
        _run(inv)
    assert exc.value.retryable
    assert inv.state is S.AWAITING_BACKEND
    assert _files(tmp_path / "reviews") == []


def test_malformed_reply_aborts_before_writing(registry, tmp_path: Path) -> None:
    tpl = registry.lookup("generic", "pr-review")
    inv = Invocation(
        tpl,
        RecordingBackend('{"findings": [{"severity": "whenever", "location": "a:1", "description": "d"}]}'),
        config=_config(tmp_path),
        overrides={"DIFF": _IMG_DIFF},
        collectors={},
    )
    with pytest.raises(MalformedFinding):
        _run(inv)
    assert inv.state is S.NORMALIZING
    assert _files(tmp_path / "reviews") == []


def test_unknown_template(registry) -> None:
    with pytest.raises(TemplateNotFound):
        asyncio.run(run_template(registry, "cobol", "pr-review", RecordingBackend("x")))


def test_illegal_transition_is_rejected(registry) -> None:
    inv = Invocation(registry.lookup("generic", "pr-review"), RecordingBackend("x"))
    with pytest.raises(RuntimeError):
        inv._advance(S.WRITING)


def test_console_text_requires_a_written_report(registry) -> None:
    tpl = registry.lookup("generic", "pr-review")
    result = workflow.InvocationResult(template=tpl, bundle=ContextBundle({}), outcome=Proceed())
    with pytest.raises(RuntimeError, match="without a written report"):
        result.console_text()


# =============================================================================
# Helpers & batch
# =============================================================================
def test_input_names_include_guard_only_keys() -> None:
    tpl = parse_template(
        "# T\n## Guard Clause\n```guard\nNO_CODE_PROVIDED <- CODE is blank\nLGTM <- MODE equals \"skip\"\n```\n"
        "## Prompt\n```prompt\n{{CODE}} {{STYLE?}}\n```\n## Report Format\n```markdown\n# R\n```\n",
        domain="python",
        name="t",
    )
    assert input_names(tpl) == ["CODE", "STYLE", "MODE"]


def test_batch_runs_templates_concurrently(registry, tmp_path: Path) -> None:
    backend = RecordingBackend("NO_ISSUES_FOUND")
    outcomes = asyncio.run(
        run_batch(
            registry,
            ["html/accessibility-check", "generic/pr-review", "nope/missing", "python/type-hinting"],
            lambda _tpl: backend,
            config=_config(tmp_path),
            overrides={"HTML": '<img src="x.png">', "DIFF": _IMG_DIFF},
            collectors={},
        )
    )
    by_ref = dict(outcomes)
    log.info("Batch outcomes: %s", by_ref)

    assert [ref for ref, _ in outcomes][0] == "html/accessibility-check"
    assert isinstance(by_ref["nope/missing"], TemplateNotFound)
    assert by_ref["python/type-hinting"].outcome.sentinel == "NO_CODE_PROVIDED"
    assert by_ref["html/accessibility-check"].written.summary_path.name.startswith("summary-html-")
    assert by_ref["generic/pr-review"].written.summary_path.name.startswith("summary-generic-")
    assert len(backend.prompts) == 2
