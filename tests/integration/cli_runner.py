"""In-process CLI runner for integration tests.

Calls mocha_api.cli.main() directly, capturing stdout/stderr the same way a
subprocess would, without paying interpreter startup for every invocation.

Usage:
    from tests.integration.cli_runner import run_cli

    result = run_cli("GET", f"{server.base_url}/health", "--allow-localhost")
    assert result.returncode == 0
    assert "healthy" in result.stdout
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from io import StringIO


@dataclass
class CLIResult:
    """Result of an in-process CLI invocation, matching subprocess interface.

    Attributes:
        returncode: Exit code (0 = success, 1 = request failed, 2 = bad input).
        stdout: Captured standard output as string.
        stderr: Captured standard error as string.
    """

    returncode: int
    stdout: str
    stderr: str


def run_cli(*args: str) -> CLIResult:
    """Run the mocha-api CLI in-process, capturing stdout/stderr."""
    from mocha_api.cli import main

    old_stdout = sys.stdout
    old_stderr = sys.stderr

    captured_stdout = StringIO()
    captured_stderr = StringIO()

    sys.stdout = captured_stdout
    sys.stderr = captured_stderr

    try:
        returncode = main(list(args))
    except SystemExit as e:
        # argparse calls sys.exit on parse errors
        returncode = e.code if isinstance(e.code, int) else 1
    finally:
        stdout_val = captured_stdout.getvalue()
        stderr_val = captured_stderr.getvalue()
        sys.stdout = old_stdout
        sys.stderr = old_stderr

    return CLIResult(returncode=returncode, stdout=stdout_val, stderr=stderr_val)
