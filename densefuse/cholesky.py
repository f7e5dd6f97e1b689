"""Sparse least-squares steps solved through a Cholesky factor of the normal equations."""

from __future__ import annotations

import numpy as np
from scipy import linalg, sparse
from scipy.sparse.csgraph import reverse_cuthill_mckee


class CholeskySolver:
    """Solves ``(J^T J) delta = J^T r`` with a fill-reducing ordering kept between calls.

    The ordering is computed on the first run and reused until
    :meth:`free_factor` is called.
    """

    def __init__(self):
        self._ordering = None

    @property
    def analysed(self):
        """Whether an ordering is currently held."""
        return self._ordering is not None

    def solve(self, jacobian, residual, first_run):
        """Return the least-squares step for ``jacobian`` and ``residual``.

        Raises ``numpy.linalg.LinAlgError`` if the normal matrix is not
        positive definite.
        """
        matrix = sparse.csr_matrix(jacobian, dtype=np.float64)
        rhs_values = np.asarray(residual, dtype=np.float64).ravel()
        if rhs_values.shape[0] != matrix.shape[0]:
            raise ValueError(
                f"residual has {rhs_values.shape[0]} entries, jacobian has {matrix.shape[0]} rows"
            )

        normal = (matrix.T @ matrix).tocsr()

        if first_run:
            if self._ordering is not None:
                raise RuntimeError("a factor is already held; free it before a new first run")
            self._ordering = np.asarray(reverse_cuthill_mckee(normal, symmetric_mode=True))
        elif self._ordering is None:
            raise RuntimeError("no factor analysed; solve with first_run=True first")

        order = self._ordering
        if order.shape[0] != matrix.shape[1]:
            raise ValueError("jacobian column count differs from the analysed factor")

        permuted = normal[order][:, order].toarray()
        lower = linalg.cholesky(permuted, lower=True)
        rhs = (matrix.T @ rhs_values)[order]
        forward = linalg.solve_triangular(lower, rhs, lower=True)
        step = linalg.solve_triangular(lower.T, forward, lower=False)

        delta = np.empty_like(step)
        delta[order] = step
        return delta

    def free_factor(self):
        """Drop the held ordering so the next solve must be a first run."""
        if self._ordering is None:
            raise RuntimeError("no factor to free")
        self._ordering = None