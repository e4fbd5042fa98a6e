#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Review ▸ Module Entry Point  (python -m prompt_review)
===============================================================================

Canonical invocation:
    python -m prompt_review [<cli args>]

* Fast `--version` path that does not import the CLI (and thus no SDKs).
* Concise startup banner (version, Python, platform) at INFO.
* Delegates everything else to `prompt_review.cli:main`, so this and the
  `prompt-review` console script behave identically.
"""
from __future__ import annotations

import argparse
import platform
import sys
from importlib.metadata import PackageNotFoundError, version as _pkg_version
from typing import List, Tuple


def _parse_cli(argv: List[str]) -> Tuple[argparse.Namespace, List[str]]:
    """Pick out --version; leave the rest for the CLI."""
    parser = argparse.ArgumentParser(prog="python -m prompt_review", add_help=False)
    parser.add_argument("--version", action="store_true")
    return parser.parse_known_args(argv)


def _resolve_version() -> str:
    try:
        return _pkg_version("prompt-review")
    except PackageNotFoundError:
        from prompt_review import __version__

        return __version__


def _print_banner(version: str) -> None:
    from prompt_review import get_logger  # local import keeps --version fast

    get_logger(__name__).info(
        "Prompt‑Review %s  |  Python %s  |  %s",
        version,
        platform.python_version(),
        platform.platform(),
    )


def main() -> None:
    args, remaining = _parse_cli(sys.argv[1:])
    if args.version:
        print(_resolve_version())
        sys.exit(0)

    _print_banner(_resolve_version())

    from prompt_review.cli import main as cli_main

    sys.exit(cli_main(remaining))


if __name__ == "__main__":
    main()
