"""
conftest.py
===========
Session-level pytest configuration for the test suite.

Custom marks
------------
slow
    Applied to tests that enumerate every quartet of many random trees or
    compile every kernel variant.  Deselect with ``-m "not slow"``.

Warning filters
---------------
NumbaPerformanceWarning messages are filtered out during tests.  Small test
trees leave the parallel kernels under-utilised, which is expected and not
informative for correctness testing.
"""

import warnings

from numba.core.errors import NumbaPerformanceWarning


def pytest_configure(config):
    """
    Configure pytest before test collection begins, so that warnings from
    kernel compilation are already filtered.
    """
    config.addinivalue_line(
        "markers",
        "slow: exhaustive or compile-heavy test (deselect with -m 'not slow')",
    )
    warnings.filterwarnings("ignore", category=NumbaPerformanceWarning)


def pytest_unconfigure(config):
    """Restore default warning behavior."""
    warnings.resetwarnings()
