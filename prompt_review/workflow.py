#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Review ▸ Invocation Workflow
===============================================================================

One invocation drives one template through a fixed state machine:

    COLLECTING → GUARDING → RENDERING → AWAITING_BACKEND → NORMALIZING
               → WRITING → AWAITING_FOLLOW_UP → DONE

    GUARDING → DONE            on a guard short‑circuit (nothing is written)
    WRITING  → DONE            for an empty report or a template without follow‑up

Every stage is a blocking transformation except the backend call, which is
awaited under the configured timeout. Failures leave the invocation in the
state where they happened and propagate:

* MissingPlaceholder / MalformedFinding – logged with traceback, aborted
* BackendTimeout / BackendError          – nothing written
* ReportWriteError                       – nothing partial visible

Several invocations may run concurrently (`run_batch`); they share only the
read‑only TemplateRegistry.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from prompt_review import get_logger
from prompt_review.backend import ReasoningBackend, ask_backend
from prompt_review.config import DEFAULT_API_TIMEOUT
from prompt_review.context import Collector, ContextBundle, collect_context, count_files_analyzed
from prompt_review.errors import InvariantViolation, PromptReviewError
from prompt_review.followup import FollowUpChoice, FollowUpDispatcher, fixed_answer
from prompt_review.guards import GuardOutcome, ShortCircuit, evaluate_guards
from prompt_review.models import Report
from prompt_review.normalizer import normalize_reply
from prompt_review.renderer import RenderedPrompt, render, render_action
from prompt_review.templates import Template, TemplateRegistry
from prompt_review.writer import ReportWriter, WrittenReport

log = get_logger(__name__)


class InvocationState(Enum):
    COLLECTING = "collecting"
    GUARDING = "guarding"
    RENDERING = "rendering"
    AWAITING_BACKEND = "awaiting_backend"
    NORMALIZING = "normalizing"
    WRITING = "writing"
    AWAITING_FOLLOW_UP = "awaiting_follow_up"
    DONE = "done"


_S = InvocationState
_TRANSITIONS: Dict[InvocationState, frozenset] = {
    _S.COLLECTING: frozenset({_S.GUARDING}),
    _S.GUARDING: frozenset({_S.RENDERING, _S.DONE}),
    _S.RENDERING: frozenset({_S.AWAITING_BACKEND}),
    _S.AWAITING_BACKEND: frozenset({_S.NORMALIZING}),
    _S.NORMALIZING: frozenset({_S.WRITING}),
    _S.WRITING: frozenset({_S.AWAITING_FOLLOW_UP, _S.DONE}),
    _S.AWAITING_FOLLOW_UP: frozenset({_S.DONE}),
    _S.DONE: frozenset(),
}


@dataclass(frozen=True)
class InvocationConfig:
    out_dir: Path = Path("reviews")
    timeout_s: float = DEFAULT_API_TIMEOUT
    overwrite: bool = False
    repo: Optional[Path] = None
    ask_follow_up: bool = True


@dataclass
class InvocationResult:
    template: Template
    bundle: ContextBundle
    outcome: GuardOutcome
    states: List[InvocationState] = field(default_factory=list)
    rendered: Optional[RenderedPrompt] = None
    report: Optional[Report] = None
    written: Optional[WrittenReport] = None
    follow_up: Optional[FollowUpChoice] = None
    next_action: Optional[str] = None

    @property
    def short_circuited(self) -> bool:
        return isinstance(self.outcome, ShortCircuit)

    def console_text(self) -> str:
        """What the CLI prints for this invocation."""
        if isinstance(self.outcome, ShortCircuit):
            return self.outcome.render()
        if self.report is None or self.written is None:
            raise RuntimeError(f"{self.template.ref}: invocation finished without a written report")
        counts = ", ".join(f"{s.value}={n}" for s, n in self.report.summary.counts.items())
        lines = [f"{self.template.ref}: {len(self.report.findings)} finding(s) ({counts})"]
        lines.append(f"Summary: {self.written.summary_path}")
        if self.written.findings_dir is not None:
            lines.append(f"Findings: {self.written.findings_dir}/")
        if self.next_action:
            lines += ["", self.next_action]
        return "\n".join(lines)


def input_names(template: Template) -> List[str]:
    """Placeholders first, then any extra keys the guard rules inspect."""
    names = list(template.placeholder_names)
    names += [g.key for g in template.guards if g.key and g.key not in names]
    return list(dict.fromkeys(names))


class Invocation:
    """Runs one template end to end; see the module docstring for states."""

    def __init__(
        self,
        template: Template,
        backend: ReasoningBackend,
        *,
        config: InvocationConfig | None = None,
        overrides: Mapping[str, str] | None = None,
        collectors: Mapping[str, Collector] | None = None,
        dispatcher: FollowUpDispatcher | None = None,
    ) -> None:
        self.template = template
        self.backend = backend
        self.config = config or InvocationConfig()
        self.overrides = dict(overrides or {})
        self.collectors = collectors
        self.dispatcher = dispatcher or FollowUpDispatcher()
        self._states: List[InvocationState] = [InvocationState.COLLECTING]

    @property
    def state(self) -> InvocationState:
        return self._states[-1]

    @property
    def history(self) -> Tuple[InvocationState, ...]:
        return tuple(self._states)

    def _advance(self, new: InvocationState) -> None:
        if new not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal transition {self.state.value} → {new.value}")
        log.debug("%s: %s → %s", self.template.ref, self.state.value, new.value)
        self._states.append(new)

    async def run(self) -> InvocationResult:
        tpl = self.template
        bundle = collect_context(
            input_names(tpl),
            self.collectors,
            overrides=self.overrides,
            repo=self.config.repo,
        )

        self._advance(InvocationState.GUARDING)
        outcome = evaluate_guards(tpl, bundle)
        result = InvocationResult(template=tpl, bundle=bundle, outcome=outcome, states=self._states)
        if isinstance(outcome, ShortCircuit):
            log.info("%s: guard short-circuit → %s (no report written)", tpl.ref, outcome.sentinel)
            self._advance(InvocationState.DONE)
            return result

        try:
            self._advance(InvocationState.RENDERING)
            result.rendered = render(tpl, bundle)

            self._advance(InvocationState.AWAITING_BACKEND)
            reply = await ask_backend(self.backend, result.rendered, timeout_s=self.config.timeout_s)

            self._advance(InvocationState.NORMALIZING)
            result.report = normalize_reply(reply, tpl, files_analyzed=count_files_analyzed(bundle))
        except InvariantViolation:
            log.exception("%s: invocation aborted in state %s", tpl.ref, self.state.value)
            raise

        self._advance(InvocationState.WRITING)
        result.written = ReportWriter(self.config.out_dir).write(result.report, overwrite=self.config.overwrite)

        if result.report.is_empty or not tpl.follow_up or not self.config.ask_follow_up:
            self._advance(InvocationState.DONE)
            return result

        self._advance(InvocationState.AWAITING_FOLLOW_UP)
        result.follow_up = self.dispatcher.dispatch(tpl.follow_up)
        if result.follow_up is FollowUpChoice.PROCEED:
            result.next_action = render_action(tpl, bundle)
        self._advance(InvocationState.DONE)
        return result


async def run_template(
    registry: TemplateRegistry,
    domain: str,
    name: str,
    backend: ReasoningBackend,
    **kwargs,
) -> InvocationResult:
    """Look up (domain, name) and run it; TemplateNotFound propagates."""
    template = registry.lookup(domain, name)
    return await Invocation(template, backend, **kwargs).run()


BatchOutcome = Union[InvocationResult, PromptReviewError]


async def run_batch(
    registry: TemplateRegistry,
    refs: Sequence[str],
    backend_factory: Callable[[Template], ReasoningBackend],
    *,
    config: InvocationConfig | None = None,
    overrides: Mapping[str, str] | None = None,
    collectors: Mapping[str, Collector] | None = None,
) -> List[Tuple[str, BatchOutcome]]:
    """
    Run several templates concurrently. Follow‑ups are not asked in a batch.
    Per‑template PromptReviewErrors are returned in place of results; other
    exceptions propagate.
    """
    base = config or InvocationConfig()
    batch_config = InvocationConfig(
        out_dir=base.out_dir,
        timeout_s=base.timeout_s,
        overwrite=base.overwrite,
        repo=base.repo,
        ask_follow_up=False,
    )

    async def _one(ref: str) -> BatchOutcome:
        try:
            template = registry.lookup_ref(ref)
            inv = Invocation(
                template,
                backend_factory(template),
                config=batch_config,
                overrides=overrides,
                collectors=collectors,
                dispatcher=FollowUpDispatcher(fixed_answer(FollowUpChoice.END)),
            )
            return await inv.run()
        except PromptReviewError as exc:
            log.error("%s failed: %s", ref, exc)
            return exc

    outcomes = await asyncio.gather(*(_one(ref) for ref in refs))
    return list(zip(refs, outcomes))


__all__ = [
    "InvocationState",
    "InvocationConfig",
    "InvocationResult",
    "Invocation",
    "input_names",
    "run_template",
    "run_batch",
]
