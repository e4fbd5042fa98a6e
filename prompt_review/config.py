#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Review ▸ Runtime Settings
===============================================================================

Environment‑backed defaults shared by the CLI and the workflow. Every value
can be overridden per invocation from the command line.

    PROMPT_REVIEW_MODEL         – backend model name
    PROMPT_REVIEW_API_TIMEOUT   – backend timeout in seconds (default 120)
    PROMPT_REVIEW_TEMPLATE_DIR  – template tree root (default: bundled templates)
    PROMPT_REVIEW_OUTPUT_DIR    – where reports are written (default: ./reviews)
    OPENAI_API_KEY              – required by the OpenAI backend
    OPENAI_BASE_URL | OPENAI_API_BASE – optional OpenAI‑compatible endpoint
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_API_TIMEOUT = 120.0
DEFAULT_OUTPUT_DIR = "reviews"


def bundled_template_dir() -> Path:
    """Location of the templates shipped inside the package."""
    return Path(str(resources.files("prompt_review").joinpath("templates")))


def _float_env(env: Mapping[str, str], key: str, default: float) -> float:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be a number of seconds, got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    model: str = DEFAULT_MODEL
    api_timeout: float = DEFAULT_API_TIMEOUT
    template_dir: Optional[Path] = None
    output_dir: Path = Path(DEFAULT_OUTPUT_DIR)
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if env is None else env
        template_dir = (env.get("PROMPT_REVIEW_TEMPLATE_DIR") or "").strip()
        return cls(
            model=(env.get("PROMPT_REVIEW_MODEL") or DEFAULT_MODEL).strip(),
            api_timeout=_float_env(env, "PROMPT_REVIEW_API_TIMEOUT", DEFAULT_API_TIMEOUT),
            template_dir=Path(template_dir).expanduser() if template_dir else None,
            output_dir=Path(env.get("PROMPT_REVIEW_OUTPUT_DIR") or DEFAULT_OUTPUT_DIR).expanduser(),
            openai_api_key=env.get("OPENAI_API_KEY") or None,
            openai_base_url=env.get("OPENAI_BASE_URL") or env.get("OPENAI_API_BASE") or None,
        )

    def resolved_template_dir(self) -> Path:
        return self.template_dir or bundled_template_dir()


__all__ = ["Settings", "bundled_template_dir", "DEFAULT_MODEL", "DEFAULT_API_TIMEOUT"]
