"""
_context.py
===========
Context managers that temporarily change how tqtally runs.

  quiet / suppress_logger   raise logger levels for the duration of a block
  suppress_warnings         filter warnings (usually NumbaPerformanceWarning)
  use_backend               pick the kernel backend used when callers pass
                            backend='best'
  silent_benchmark          all of the above at once, for timing runs

Every manager restores the previous state on exit, including exits by
exception, and can be nested.
"""

import logging
import threading
import warnings
from contextlib import contextmanager
from typing import Optional, Type


_PACKAGE_LOGGER = "tqtally"

# Backend override, one slot per thread.  Forest resolves the backend in the
# calling thread before handing work to its pool, so workers never read it.
_override = threading.local()


# ============================================================================ #
# Logging
# ============================================================================ #


@contextmanager
def suppress_logger(logger_name: str, level: int = logging.CRITICAL):
    """
    Set the level of one logger for the duration of the block.

    Parameters
    ----------
    logger_name : str
        Dotted logger name, e.g. 'tqtally._forest' or 'tqtally'.
    level : int, default logging.CRITICAL

    Examples
    --------
    >>> # Keep the import-time banner, hide per-batch plans
    >>> with suppress_logger('tqtally._logging', logging.WARNING):
    ...     d = forest.distances()
    """
    target = logging.getLogger(logger_name)
    saved = target.level
    target.setLevel(level)
    try:
        yield target
    finally:
        target.setLevel(saved)


@contextmanager
def quiet(level: int = logging.CRITICAL):
    """
    Silence the whole package.

    All modules log through children of the ``tqtally`` logger, which inherit
    its level unless they set their own.

    Examples
    --------
    >>> with quiet():
    ...     forest = Forest(newicks)

    >>> with quiet(logging.WARNING):
    ...     tally = forest.tally(0, 1)
    """
    with suppress_logger(_PACKAGE_LOGGER, level):
        yield


# ============================================================================ #
# Warnings
# ============================================================================ #


@contextmanager
def suppress_warnings(category: Optional[Type[Warning]] = None):
    """
    Ignore warnings of *category* (every category when None) inside the block.

    Examples
    --------
    >>> from numba.core.errors import NumbaPerformanceWarning
    >>> with suppress_warnings(NumbaPerformanceWarning):
    ...     d = quartet_distance(t1, t2)
    """
    with warnings.catch_warnings():
        if category is None:
            warnings.simplefilter("ignore")
        else:
            warnings.filterwarnings("ignore", category=category)
        yield


# ============================================================================ #
# Backend selection
# ============================================================================ #


@contextmanager
def use_backend(backend: str):
    """
    Make *backend* the meaning of backend='best' in the current thread.

    Calls that name a backend explicitly are not affected.

    Parameters
    ----------
    backend : str
        'python', 'cpu-serial', 'cpu-parallel' or 'best' (no override).

    Raises
    ------
    ValueError
        *backend* is not an available backend.

    Examples
    --------
    >>> # Step through the uncompiled kernels in a debugger
    >>> with use_backend('python'):
    ...     tally = quartet_tally(t1, t2)
    """
    from tqtally._backend import get_available_backends

    available = get_available_backends()
    if backend != "best" and backend not in available:
        raise ValueError(
            f"Backend '{backend}' not available. "
            f"Available backends: {', '.join(available)}"
        )

    saved = getattr(_override, "backend", None)
    _override.backend = None if backend == "best" else backend
    try:
        yield
    finally:
        _override.backend = saved


def get_backend_override() -> Optional[str]:
    """Backend forced by ``use_backend`` in this thread, or None."""
    return getattr(_override, "backend", None)


# ============================================================================ #
# Combined
# ============================================================================ #


@contextmanager
def silent_benchmark(backend: str = "best"):
    """
    Quiet logging, ignore warnings and force *backend*.

    Examples
    --------
    >>> for name in get_available_backends():
    ...     with silent_benchmark(name):
    ...         start = time.perf_counter()
    ...         forest.all_pairs()
    ...         print(name, time.perf_counter() - start)
    """
    with quiet(), use_backend(backend), suppress_warnings():
        yield
