#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Review ▸ Command Line Interface
===============================================================================

Subcommands
-----------
• list        – list available templates (optionally one domain)
• render      – print the rendered prompt, or the guard sentinel
• run         – full invocation: guard → backend → report files → follow‑up
• batch       – run several templates concurrently against the same context
• validate    – normalise a saved backend reply and print the report summary
• schema      – print the findings JSON schema
• version     – print package version

Global flags
------------
• --version   – print package version (equivalent to the `version` subcommand)

Exit codes
----------
0 success (guard sentinels included) · 2 user error · 3 backend failure or
timeout · 4 filesystem failure · 1 internal invariant violation

Examples
--------
  # 1) Copy‑paste flow: render, ask any chat tool, feed the answer back
  prompt-review render html accessibility-check --context HTML=@page.html
  prompt-review run html accessibility-check --context HTML=@page.html --reply-file answer.md

  # 2) Review the working tree diff through the OpenAI API
  prompt-review run generic pr-review --repo . --out reviews/

  # 3) Several reviews at once
  prompt-review batch generic/pr-review python/type-hinting --context CODE=@app.py
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from importlib import resources
from pathlib import Path
from typing import Dict, List, Optional

from prompt_review import get_logger, get_version
from prompt_review.backend import OpenAIBackend, ReasoningBackend, StaticReplyBackend
from prompt_review.config import Settings
from prompt_review.context import collect_context, count_files_analyzed, parse_context_arg
from prompt_review.errors import (
    BackendError,
    BackendTimeout,
    InvariantViolation,
    PromptReviewError,
    ReportWriteError,
    TemplateError,
    TemplateNotFound,
)
from prompt_review.followup import FollowUpChoice, FollowUpDispatcher, fixed_answer
from prompt_review.guards import ShortCircuit, evaluate_guards
from prompt_review.normalizer import normalize_reply
from prompt_review.renderer import render
from prompt_review.templates import TemplateRegistry
from prompt_review.workflow import Invocation, InvocationConfig, input_names, run_batch

log = get_logger(__name__)

EXIT_OK = 0
EXIT_INTERNAL = 1
EXIT_USAGE = 2
EXIT_BACKEND = 3
EXIT_FILESYSTEM = 4


class UsageError(Exception):
    """Bad command line input (exit 2)."""


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _exit_code(exc: PromptReviewError) -> int:
    if isinstance(exc, (TemplateNotFound, TemplateError)):
        return EXIT_USAGE
    if isinstance(exc, (BackendTimeout, BackendError)):
        return EXIT_BACKEND
    if isinstance(exc, ReportWriteError):
        return EXIT_FILESYSTEM
    return EXIT_INTERNAL


def _settings() -> Settings:
    try:
        return Settings.from_env()
    except ValueError as exc:
        raise UsageError(str(exc)) from exc


def _registry(args: argparse.Namespace, settings: Settings) -> TemplateRegistry:
    root = Path(args.template_dir).expanduser() if args.template_dir else settings.resolved_template_dir()
    if not root.is_dir():
        raise UsageError(f"Template directory not found: {root}")
    return TemplateRegistry.load(root)


def _overrides(args: argparse.Namespace) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for raw in args.context or ():
        try:
            key, val = parse_context_arg(raw)
        except ValueError as exc:
            raise UsageError(str(exc)) from exc
        values[key] = val
    return values


def _repo(args: argparse.Namespace) -> Optional[Path]:
    return Path(args.repo).expanduser().resolve() if args.repo else None


def _backend(args: argparse.Namespace, settings: Settings) -> ReasoningBackend:
    if getattr(args, "reply_file", None):
        return StaticReplyBackend.from_file(Path(args.reply_file))
    return OpenAIBackend(
        model=args.model or settings.model,
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
    )


def _invocation_config(args: argparse.Namespace, settings: Settings, *, ask_follow_up: bool) -> InvocationConfig:
    return InvocationConfig(
        out_dir=Path(args.out).expanduser() if args.out else settings.output_dir,
        timeout_s=args.timeout if args.timeout is not None else settings.api_timeout,
        overwrite=args.overwrite,
        repo=_repo(args),
        ask_follow_up=ask_follow_up,
    )


def _dispatcher(args: argparse.Namespace) -> FollowUpDispatcher:
    if args.yes:
        return FollowUpDispatcher(fixed_answer(FollowUpChoice.PROCEED))
    return FollowUpDispatcher()


# ─────────────────────────────────────────────────────────────────────────────
# Subcommand handlers
# ─────────────────────────────────────────────────────────────────────────────

def cmd_list(args: argparse.Namespace) -> int:
    registry = _registry(args, _settings())
    templates = registry.list(args.domain)
    if not templates:
        print("No templates found.")
        return EXIT_OK
    width = max(len(t.ref) for t in templates)
    for tpl in templates:
        print(f"{tpl.ref:<{width}}  {tpl.title}")
    return EXIT_OK


def cmd_render(args: argparse.Namespace) -> int:
    """
    Print what would be sent to a reasoning backend, or the sentinel when a
    guard short‑circuits.
    """
    registry = _registry(args, _settings())
    template = registry.lookup(args.domain, args.template)
    bundle = collect_context(input_names(template), overrides=_overrides(args), repo=_repo(args))
    outcome = evaluate_guards(template, bundle)
    if isinstance(outcome, ShortCircuit):
        print(outcome.render())
        return EXIT_OK
    print(render(template, bundle).as_text())
    return EXIT_OK


def cmd_run(args: argparse.Namespace) -> int:
    settings = _settings()
    registry = _registry(args, settings)
    template = registry.lookup(args.domain, args.template)
    overrides = _overrides(args)
    invocation = Invocation(
        template,
        _backend(args, settings),
        config=_invocation_config(args, settings, ask_follow_up=not args.no_follow_up),
        overrides=overrides,
        dispatcher=_dispatcher(args),
    )
    result = asyncio.run(invocation.run())
    print(result.console_text())
    return EXIT_OK


def cmd_batch(args: argparse.Namespace) -> int:
    """
    Run every DOMAIN/TEMPLATE concurrently. Exit status is that of the first
    failure in argument order, or 0.
    """
    settings = _settings()
    registry = _registry(args, settings)
    overrides = _overrides(args)
    backend = _backend(args, settings)
    outcomes = asyncio.run(
        run_batch(
            registry,
            args.refs,
            lambda _tpl: backend,
            config=_invocation_config(args, settings, ask_follow_up=False),
            overrides=overrides,
        )
    )
    status = EXIT_OK
    for ref, outcome in outcomes:
        if isinstance(outcome, PromptReviewError):
            print(f"{ref}: error: {outcome}")
            status = status or _exit_code(outcome)
            continue
        print(outcome.console_text())
        print()
    return status


def cmd_validate(args: argparse.Namespace) -> int:
    """
    Normalise a saved reply without writing anything, printing the summary.
    """
    registry = _registry(args, _settings())
    template = registry.lookup(args.domain, args.template)
    try:
        raw = Path(args.reply_file).expanduser().read_text(encoding="utf-8")
    except OSError as exc:
        raise UsageError(f"Cannot read reply file {args.reply_file}: {exc}") from exc

    bundle = collect_context(input_names(template), overrides=_overrides(args), repo=_repo(args))
    report = normalize_reply(raw, template, files_analyzed=count_files_analyzed(bundle))
    print(f"✓ Reply is valid for {template.ref}: {report.summary.total} finding(s).")
    for finding in report.findings:
        loc = f" @ {finding.location}" if finding.location else ""
        print(f"  {finding.severity.marker} {finding.severity.value}: {finding.heading}{loc}")
    return EXIT_OK


def cmd_schema(_args: argparse.Namespace) -> int:
    """
    Print the findings JSON schema bundled with the package.
    """
    with resources.files("prompt_review").joinpath("finding_schema.json").open(encoding="utf-8") as fh:
        data = json.load(fh)
    print(json.dumps(data, indent=2, ensure_ascii=False))
    return EXIT_OK


def cmd_version(_args: argparse.Namespace) -> int:
    print(get_version())
    return EXIT_OK


# ─────────────────────────────────────────────────────────────────────────────
# Argument parser
# ─────────────────────────────────────────────────────────────────────────────

def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="prompt-review",
        description="Prompt‑Review – guarded, template‑driven code review CLI",
    )
    p.add_argument("--version", action="store_true", help="Print package version and exit.")

    # Options shared by every template‑aware subcommand
    tpl_opts = argparse.ArgumentParser(add_help=False)
    tpl_opts.add_argument("--template-dir", help="Template tree root (default: $PROMPT_REVIEW_TEMPLATE_DIR or bundled).")

    ctx_opts = argparse.ArgumentParser(add_help=False)
    ctx_opts.add_argument(
        "--context",
        "-c",
        action="append",
        metavar="KEY=VALUE",
        help="Context input; VALUE may be text, @path or - for stdin. Repeatable.",
    )
    ctx_opts.add_argument("--repo", help="Repository collectors read from (default: current directory).")

    run_opts = argparse.ArgumentParser(add_help=False)
    run_opts.add_argument("--reply-file", help="Use a saved backend reply instead of calling the API.")
    run_opts.add_argument("--out", help="Output directory (default: $PROMPT_REVIEW_OUTPUT_DIR or ./reviews).")
    run_opts.add_argument("--overwrite", action="store_true", help="Replace today's report instead of suffixing -2, -3, …")
    run_opts.add_argument("--timeout", type=float, default=None, help="Backend timeout in seconds.")
    run_opts.add_argument("--model", default=None, help="Backend model id (default: $PROMPT_REVIEW_MODEL).")

    sub = p.add_subparsers(dest="cmd", metavar="command")

    pl = sub.add_parser("list", parents=[tpl_opts], help="List available templates")
    pl.add_argument("--domain", help="Only list this domain.")
    pl.set_defaults(func=cmd_list)

    pr = sub.add_parser("render", parents=[tpl_opts, ctx_opts], help="Print the rendered prompt or guard sentinel")
    pr.add_argument("domain")
    pr.add_argument("template")
    pr.set_defaults(func=cmd_render)

    prun = sub.add_parser("run", parents=[tpl_opts, ctx_opts, run_opts], help="Run one template end to end")
    prun.add_argument("domain")
    prun.add_argument("template")
    answer = prun.add_mutually_exclusive_group()
    answer.add_argument("--yes", "-y", action="store_true", help="Answer the follow‑up question with yes.")
    answer.add_argument("--no-follow-up", action="store_true", help="Do not ask the follow‑up question.")
    prun.set_defaults(func=cmd_run)

    pb = sub.add_parser("batch", parents=[tpl_opts, ctx_opts, run_opts], help="Run several templates concurrently")
    pb.add_argument("refs", nargs="+", metavar="DOMAIN/TEMPLATE")
    pb.set_defaults(func=cmd_batch)

    pv = sub.add_parser("validate", parents=[tpl_opts, ctx_opts], help="Normalise a saved reply and print its findings")
    pv.add_argument("domain")
    pv.add_argument("template")
    pv.add_argument("reply_file", metavar="reply-file")
    pv.set_defaults(func=cmd_validate)

    ps = sub.add_parser("schema", help="Print the findings JSON schema")
    ps.set_defaults(func=cmd_schema)

    pvrs = sub.add_parser("version", help="Print package version")
    pvrs.set_defaults(func=cmd_version)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    try:
        parser = _parser()
        args = parser.parse_args(argv)

        if getattr(args, "version", False):
            print(get_version())
            return EXIT_OK

        if not hasattr(args, "func"):
            parser.print_help()
            return EXIT_USAGE

        return int(args.func(args))
    except UsageError as exc:
        log.error("%s", exc)
        return EXIT_USAGE
    except TemplateNotFound as exc:
        log.error("%s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_USAGE
    except InvariantViolation as exc:
        log.error("Invariant violation: %s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_INTERNAL
    except PromptReviewError as exc:
        log.error("%s", exc)
        return _exit_code(exc)
    except KeyboardInterrupt:
        log.info("Interrupted by user (Ctrl‑C).")
        return 130
    except SystemExit as exc:
        return int(exc.code) if isinstance(exc.code, int) else EXIT_INTERNAL
    except Exception as exc:
        log.exception("Fatal error in CLI: %s", exc)
        return EXIT_INTERNAL


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
