#!/usr/bin/env python3
"""
Test runner script for cache-connect.

Wraps pytest with the unit/integration selections used in this repository.
"""

import argparse
import subprocess
import sys


def check_dependencies():
    """Check if pytest and pytest-asyncio are installed."""
    try:
        import pytest  # noqa: F401
        import pytest_asyncio  # noqa: F401
        return True
    except ImportError:
        print("ERROR: test dependencies are not installed!")
        print("   Please run: pip install -e '.[test]'")
        return False


def main():
    parser = argparse.ArgumentParser(description="Run tests for cache-connect")
    parser.add_argument("--unit", action="store_true", help="Run only unit tests")
    parser.add_argument("--integration", action="store_true", help="Run only integration tests")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--file", help="Run specific test file")
    parser.add_argument("--test", help="Run tests matching a -k expression")

    args = parser.parse_args()

    if not check_dependencies():
        sys.exit(1)

    cmd = [sys.executable, "-m", "pytest"]
    if args.verbose:
        cmd.append("-v")

    if args.unit:
        cmd.extend(["-m", "unit"])
    elif args.integration:
        cmd.extend(["-m", "integration"])

    if args.file:
        cmd.append(args.file)
    if args.test:
        cmd.extend(["-k", args.test])

    print(f"RUNNING: {' '.join(cmd)}")
    sys.exit(subprocess.call(cmd))


if __name__ == "__main__":
    main()
