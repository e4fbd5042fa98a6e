#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Review ▸ Error Taxonomy
===============================================================================

| Error               | Meaning                                   | Retryable |
|---------------------|-------------------------------------------|-----------|
| InputAbsent         | a context slot has no value               | –         |
| TemplateNotFound    | unknown (domain, name) pair               | no        |
| TemplateError       | template file could not be parsed         | no        |
| MissingPlaceholder  | renderer met an unresolved placeholder    | no        |
| MalformedFinding    | backend reply does not fit the schema     | no        |
| BackendTimeout      | backend did not answer in time            | yes       |
| BackendError        | backend call failed                       | yes       |
| ReportWriteError    | report could not be persisted             | no        |

`InputAbsent` never escapes the Guard Evaluator: it is turned into the
template's sentinel. `MissingPlaceholder` and `MalformedFinding` derive from
`InvariantViolation`, a mismatch between a template and the pipeline rather
than bad user input.
"""
from __future__ import annotations

from typing import Any


class PromptReviewError(Exception):
    """Base class for every error raised by prompt_review."""

    error_code: str = "PR_000"
    retryable: bool = False

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if not self.details:
            return self.message
        extra = ", ".join(f"{k}={v!r}" for k, v in sorted(self.details.items()))
        return f"{self.message} ({extra})"


class InputAbsent(PromptReviewError):
    error_code = "PR_INPUT_001"

    def __init__(self, key: str) -> None:
        super().__init__(f"No value supplied for {key}", key=key)
        self.key = key


class TemplateNotFound(PromptReviewError):
    error_code = "PR_TPL_404"

    def __init__(self, domain: str, name: str) -> None:
        super().__init__(f"No matching template for {domain}/{name}", domain=domain, name=name)
        self.domain = domain
        self.name = name


class TemplateError(PromptReviewError):
    error_code = "PR_TPL_001"


class InvariantViolation(PromptReviewError):
    error_code = "PR_INV_000"


class MissingPlaceholder(InvariantViolation):
    error_code = "PR_INV_001"

    def __init__(self, key: str, template: str) -> None:
        super().__init__(f"Placeholder {{{{{key}}}}} has no value", key=key, template=template)
        self.key = key


class MalformedFinding(InvariantViolation):
    error_code = "PR_INV_002"


class BackendTimeout(PromptReviewError):
    error_code = "PR_BACKEND_408"
    retryable = True

    def __init__(self, timeout_s: float) -> None:
        super().__init__(f"Reasoning backend did not answer within {timeout_s:g}s", timeout_s=timeout_s)
        self.timeout_s = timeout_s


class BackendError(PromptReviewError):
    error_code = "PR_BACKEND_500"
    retryable = True


class ReportWriteError(PromptReviewError):
    error_code = "PR_FS_001"


__all__ = [
    "PromptReviewError",
    "InputAbsent",
    "TemplateNotFound",
    "TemplateError",
    "InvariantViolation",
    "MissingPlaceholder",
    "MalformedFinding",
    "BackendTimeout",
    "BackendError",
    "ReportWriteError",
]
