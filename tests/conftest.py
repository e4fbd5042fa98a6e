#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Shared fixtures
===============================================================================

* `registry`        – the bundled templates, loaded once per test
* `template_dir`    – an empty template root under tmp_path
* `write_template`  – drop a template file into `template_dir`
* Backends          – canned, slow and failing ReasoningBackends

Logs go to tmp so test runs never create ./logs in the checkout.
"""
from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Callable, List

import pytest

os.environ.setdefault("PROMPT_REVIEW_LOG_DIR", os.path.join(tempfile.gettempdir(), "prompt-review-test-logs"))

from prompt_review.config import bundled_template_dir  # noqa: E402
from prompt_review.renderer import RenderedPrompt  # noqa: E402
from prompt_review.templates import TemplateRegistry  # noqa: E402


class RecordingBackend:
    """Returns *reply* and remembers every prompt it was asked."""

    def __init__(self, reply: str) -> None:
        self.reply = reply
        self.prompts: List[RenderedPrompt] = []

    async def complete(self, prompt: RenderedPrompt) -> str:
        self.prompts.append(prompt)
        return self.reply


class SlowBackend:
    """Never answers within any sane test timeout."""

    def __init__(self, delay: float = 5.0) -> None:
        self.delay = delay

    async def complete(self, prompt: RenderedPrompt) -> str:
        await asyncio.sleep(self.delay)
        return "NO_ISSUES_FOUND"


@pytest.fixture()
def registry() -> TemplateRegistry:
    return TemplateRegistry.load(bundled_template_dir())


@pytest.fixture()
def template_dir(tmp_path: Path) -> Path:
    root = tmp_path / "templates"
    root.mkdir()
    return root


@pytest.fixture()
def write_template(template_dir: Path) -> Callable[[str, str, str], Path]:
    def _write(domain: str, name: str, text: str) -> Path:
        d = template_dir / domain
        d.mkdir(exist_ok=True)
        path = d / f"{name}.md"
        path.write_text(text, encoding="utf-8")
        return path

    return _write
