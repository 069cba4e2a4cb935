"""Start coverage measurement in interpreters spawned by the test suite."""

import os

if os.getenv("COVERAGE_PROCESS_START"):
    try:
        import coverage
    except ImportError:  # pragma: no cover - test extra not installed
        coverage = None
    if coverage is not None:
        coverage.process_startup()
