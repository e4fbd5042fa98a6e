#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Review ▸ Template Renderer
===============================================================================

Pure `{{KEY}}` / `{{KEY?}}` substitution. Only called after the Guard
Evaluator returned `Proceed`, so every required key must have a value; if one
does not, that is a template/pipeline mismatch and `MissingPlaceholder` is
raised rather than a half‑filled prompt being sent anywhere.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

from prompt_review import get_logger
from prompt_review.context import ContextBundle
from prompt_review.errors import MissingPlaceholder
from prompt_review.templates import PLACEHOLDER_RE, Template

log = get_logger(__name__)

NOT_PROVIDED = "(not provided)"


@dataclass(frozen=True)
class RenderedPrompt:
    template_ref: str
    instruction: str
    report_schema: str

    def as_text(self) -> str:
        """Instruction followed by the report skeleton, for copy‑paste use."""
        return (
            f"{self.instruction.rstrip()}\n\n"
            "Format your answer using this report structure:\n\n"
            f"{self.report_schema.rstrip()}\n"
        )


def render(template: Template, bundle: ContextBundle) -> RenderedPrompt:
    """Substitute every placeholder of *template* from *bundle*."""

    def _sub(m: re.Match[str]) -> str:
        key, optional = m.group(1), bool(m.group(2))
        if key not in bundle:
            raise MissingPlaceholder(key, template.ref)
        if bundle.is_absent(key):
            if optional:
                return NOT_PROVIDED
            raise MissingPlaceholder(key, template.ref)
        return bundle.value(key)

    instruction = PLACEHOLDER_RE.sub(_sub, template.prompt)
    log.debug("Rendered %s (%d chars).", template.ref, len(instruction))
    return RenderedPrompt(
        template_ref=template.ref,
        instruction=instruction,
        report_schema=template.report_format,
    )


def render_action(template: Template, bundle: ContextBundle) -> str | None:
    """Follow‑up action text with placeholders filled; absent ones read as not provided."""
    if not template.next_action:
        return None

    def _sub(m: re.Match[str]) -> str:
        val = bundle.get(m.group(1))
        return val if isinstance(val, str) else NOT_PROVIDED

    return PLACEHOLDER_RE.sub(_sub, template.next_action)


__all__ = ["RenderedPrompt", "render", "render_action", "NOT_PROVIDED"]
