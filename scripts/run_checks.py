#!/usr/bin/env python3
"""Run repository checks: ruff, pyright, then pytest under Qt offscreen.

Usage:
  python scripts/run_checks.py [--no-lint] [--no-ui] [--timeout SECONDS] [-- pytest args...]

`--no-ui` deselects the window tests, for machines without a Qt platform
plugin. Exits with the first failing step's status.
"""

from __future__ import annotations

import argparse
import os
import subprocess
import sys

UI_TESTS = "tests/test_ui_main.py"


def run(cmd: list[str], env: dict[str, str] | None = None, timeout: int | None = None) -> int:
    print("=>", " ".join(cmd))
    try:
        return subprocess.run(cmd, env=env, check=False, timeout=timeout).returncode
    except subprocess.TimeoutExpired:
        print(f"timed out after {timeout} seconds", file=sys.stderr)
        return 124


def main() -> int:
    parser = argparse.ArgumentParser(description="Lint, type-check and test heic_converter")
    parser.add_argument("--no-lint", action="store_true", help="Skip ruff and pyright")
    parser.add_argument("--no-ui", action="store_true", help="Skip the Qt window tests")
    parser.add_argument("--timeout", type=int, default=300, help="Maximum seconds for the whole pytest run")
    parser.add_argument("pytest_args", nargs=argparse.REMAINDER, help="Extra pytest arguments")
    args = parser.parse_args()

    if not args.no_lint:
        rc = run([sys.executable, "-m", "ruff", "check", "heic_converter", "tests", "scripts"])
        if rc != 0:
            print("ruff failed")
            return rc
        rc = run([sys.executable, "-m", "pyright", "heic_converter"])
        if rc != 0:
            print("pyright failed")
            return rc

    env = os.environ.copy()
    env.setdefault("QT_QPA_PLATFORM", "offscreen")
    cmd = [sys.executable, "-m", "pytest", "-q", f"--timeout={min(120, args.timeout)}"]
    if args.no_ui:
        cmd += ["--ignore", UI_TESTS]
    cmd += [a for a in args.pytest_args if a != "--"]
    rc = run(cmd, env=env, timeout=args.timeout)
    if rc != 0:
        print("pytest failed")
        return rc

    print("All checks passed")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
