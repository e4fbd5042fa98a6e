#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Review ▸ Reasoning Backends
===============================================================================

The reasoning backend is an opaque awaitable: it receives a `RenderedPrompt`
and returns raw text for the Finding Normalizer. Two implementations ship:

* `OpenAIBackend`     – OpenAI Chat Completions through the official SDK
                         (`AsyncOpenAI`, imported lazily on first use).
* `StaticReplyBackend` – returns a reply saved earlier, which is the manual
                         copy‑paste flow (render → paste into a chat tool →
                         save the answer → `run --reply-file`).

`OpenAIBackend` asks for JSON only and sends the rendered instruction
without the Markdown report skeleton; the skeleton travels with the
copy‑paste text (`RenderedPrompt.as_text()`).

`ask_backend()` wraps a call in the caller's timeout. On expiry it raises
`BackendTimeout`; nothing is retried here, retries belong to whoever wraps
the whole invocation.

Environment
-----------
OPENAI_API_KEY            – required by OpenAIBackend
OPENAI_BASE_URL|API_BASE  – optional OpenAI‑compatible base URL
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from prompt_review import get_logger
from prompt_review.errors import BackendError, BackendTimeout
from prompt_review.renderer import RenderedPrompt

log = get_logger(__name__)


def _system_prompt() -> str:
    """
    JSON reply contract for API backends. The template's Markdown report
    skeleton is left out of the request so the model sees one format only.
    """
    return (
        "You are Prompt‑Review, a meticulous code reviewer. Follow the user's "
        "instructions exactly. If a guard clause in the instructions applies, reply "
        "with its sentinel text only. Otherwise reply with ONE JSON object and no prose:\n"
        '{"findings": [{"severity": "Critical|High|Medium|Low", "title": "...", '
        '"location": "path/to/file:line", "description": "...", "suggested_fix": "...", '
        '"rule_ref": "optional rule or WCAG reference"}], '
        '"recommendations": ["..."], "files_analyzed": 1}\n'
        "Use an empty findings array when there is nothing to report."
    )


@runtime_checkable
class ReasoningBackend(Protocol):
    async def complete(self, prompt: RenderedPrompt) -> str:  # pragma: no cover - protocol
        ...


@dataclass
class OpenAIBackend:
    """
    Thin async wrapper around the OpenAI Chat Completions API.

    Attributes
    ----------
    model : str
        Model name.
    api_key : str | None
        Falls back to the SDK's own environment lookup when None.
    base_url : str | None
        Optional OpenAI‑compatible endpoint.
    temperature : float
        Sampling temperature; 0 keeps reports reproducible.
    """

    model: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    temperature: float = 0.0

    _sdk: Any | None = field(default=None, init=False, repr=False)

    def _ensure_sdk(self) -> Any:
        if self._sdk is not None:
            return self._sdk
        try:
            from openai import AsyncOpenAI
        except ImportError as exc:  # pragma: no cover
            log.error("OpenAI SDK not installed. Run: pip install 'openai>=1.0.0'")
            raise BackendError("OpenAI SDK is not installed") from exc
        try:
            self._sdk = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        except Exception as exc:  # the SDK raises its own OpenAIError subclasses here
            raise BackendError(f"Cannot initialise OpenAI client: {exc}") from exc
        log.info("OpenAI backend initialised | model=%s | base=%s", self.model, self.base_url or "<default>")
        return self._sdk

    def messages(self, prompt: RenderedPrompt) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": _system_prompt()},
            {"role": "user", "content": prompt.instruction.rstrip()},
        ]

    async def complete(self, prompt: RenderedPrompt) -> str:
        sdk = self._ensure_sdk()
        messages = self.messages(prompt)
        try:
            resp = await sdk.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.exception("OpenAI request for %s failed: %s", prompt.template_ref, exc)
            raise BackendError(f"OpenAI request failed: {exc}") from exc

        try:
            content = resp.choices[0].message.content or ""
        except (AttributeError, IndexError) as exc:
            raise BackendError(f"Malformed API response for {prompt.template_ref}: {exc}") from exc
        log.debug("Backend reply for %s: %d chars", prompt.template_ref, len(content))
        return content


@dataclass
class StaticReplyBackend:
    """Backend that answers with a fixed reply (saved file or literal text)."""

    reply: str

    @classmethod
    def from_file(cls, path: Path) -> "StaticReplyBackend":
        try:
            return cls(Path(path).expanduser().read_text(encoding="utf-8"))
        except OSError as exc:
            raise BackendError(f"Cannot read reply file {path}: {exc}") from exc

    async def complete(self, prompt: RenderedPrompt) -> str:
        log.debug("Static reply for %s (%d chars)", prompt.template_ref, len(self.reply))
        return self.reply


async def ask_backend(backend: ReasoningBackend, prompt: RenderedPrompt, *, timeout_s: float) -> str:
    """Await *backend* for *prompt*, raising BackendTimeout after *timeout_s* seconds."""
    try:
        return await asyncio.wait_for(backend.complete(prompt), timeout=timeout_s)
    except asyncio.TimeoutError as exc:
        log.warning("Backend timed out after %ss for %s", timeout_s, prompt.template_ref)
        raise BackendTimeout(timeout_s) from exc


__all__ = ["ReasoningBackend", "OpenAIBackend", "StaticReplyBackend", "ask_backend"]
