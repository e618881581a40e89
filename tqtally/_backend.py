"""
_backend.py
===========
Names and resolution of the kernel backends.

Every kernel in _cpu_kernels.py exists in three builds:

  'python'        the plain Python function, uncompiled (reference, debugging)
  'cpu-serial'    numba.njit(nogil=True); safe to call from worker threads
  'cpu-parallel'  numba.njit(parallel=True) with prange over numba's pool

'best' means the last entry of ``get_available_backends()`` unless a
``use_backend`` block says otherwise.  Nothing here logs; callers do.
"""

from typing import Dict, List


_BACKENDS = ("python", "cpu-serial", "cpu-parallel")


def get_available_backends() -> List[str]:
    """
    Backend names, slowest first.

    >>> get_available_backends()
    ['python', 'cpu-serial', 'cpu-parallel']
    """
    return list(_BACKENDS)


def get_best_backend() -> str:
    return get_available_backends()[-1]


def resolve_backend(backend: str) -> str:
    """
    Map 'best' to a concrete backend and check any other name.

    Raises
    ------
    ValueError
        *backend* is neither 'best' nor an available backend.

    >>> resolve_backend('cuda')
    Traceback (most recent call last):
    ...
    ValueError: Backend 'cuda' not available. Available backends: python, cpu-serial, cpu-parallel
    """
    if backend == "best":
        return get_best_backend()
    available = get_available_backends()
    if backend not in available:
        raise ValueError(
            f"Backend '{backend}' not available. "
            f"Available backends: {', '.join(available)}"
        )
    return backend


def effective_backend(backend: str = "best") -> str:
    """``resolve_backend`` after applying the ``use_backend`` override to 'best'."""
    from tqtally._context import get_backend_override

    if backend == "best":
        backend = get_backend_override() or backend
    return resolve_backend(backend)


def kernel_set(backend: str) -> Dict[str, object]:
    """
    Kernels of *backend* keyed by name.

    The kernel module is imported lazily so that listing backends does not
    load cached numba builds.
    """
    from tqtally._cpu_kernels import KERNELS

    return KERNELS[resolve_backend(backend)]


def get_backend_info() -> dict:
    """
    Numba and backend status as a dict.

    Keys: 'numba_version', 'threading_layer' ('unknown' until a parallel
    kernel has run), 'num_threads', 'backends', 'best_backend'.
    """
    import numba

    try:
        threading_layer = numba.threading_layer()
    except ValueError:
        # No parallel kernel has started the pool yet.
        threading_layer = "unknown"

    return {
        "numba_version": numba.__version__,
        "threading_layer": threading_layer,
        "num_threads": numba.get_num_threads(),
        "backends": get_available_backends(),
        "best_backend": get_best_backend(),
    }
