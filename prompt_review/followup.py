#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Review ▸ Follow‑up Dispatcher
===============================================================================

After a non‑empty report is written the template's single follow‑up question
is asked once. The answer is binary: proceed to the template's next action,
or end the session. There are no retries and no re-prompting.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from prompt_review import get_logger

log = get_logger(__name__)

_YES = {"y", "yes", "proceed", "ok", "sure", "1", "true"}

Responder = Callable[[str], Optional[str]]


class FollowUpChoice(Enum):
    PROCEED = "proceed"
    END = "end"


def parse_answer(answer: Optional[str]) -> FollowUpChoice:
    """`y`/`yes`/`proceed`/... → PROCEED; anything else, EOF included → END."""
    if answer is None:
        return FollowUpChoice.END
    return FollowUpChoice.PROCEED if answer.strip().lower() in _YES else FollowUpChoice.END


def fixed_answer(choice: FollowUpChoice) -> Responder:
    """Responder for non‑interactive runs."""

    def _answer(_question: str) -> str:
        return "yes" if choice is FollowUpChoice.PROCEED else "no"

    return _answer


def prompt_responder(question: str) -> Optional[str]:
    """Interactive responder reading one line from stdin."""
    try:
        return input(f"{question} [y/N] ")
    except EOFError:
        return None


@dataclass
class FollowUpDispatcher:
    responder: Responder = prompt_responder

    def dispatch(self, question: str) -> FollowUpChoice:
        choice = parse_answer(self.responder(question))
        log.info("Follow-up %r → %s", question, choice.value)
        return choice


__all__ = ["FollowUpChoice", "FollowUpDispatcher", "parse_answer", "fixed_answer", "prompt_responder"]
