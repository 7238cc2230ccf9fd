"""
ParaCore Sketcher - Banded linear solve
=======================================

Gaussian elimination without pivoting for matrices that are nonzero only
in a band around the diagonal plus the two rightmost columns. The normal
equations J*J^T of a sketch whose params are ordered by first appearance
usually look like this.

Use BandedMatrix.fits() first; a matrix that does not fit (or hits a tiny
pivot) is solved densely by the caller.
"""

import numpy as np

from config.tolerances import Tolerances
from sketcher.errors import SingularMatrixError

# Trailing columns kept dense
DENSE_COLUMNS = 2


class BandedMatrix:

    def __init__(self, a: np.ndarray, b: np.ndarray,
                 left: int = None, right: int = None):
        self.a = np.array(a, dtype=float)
        self.b = np.array(b, dtype=float)
        self.n = self.a.shape[0]
        self.left = Tolerances.SOLVER_BAND_LEFT if left is None else left
        self.right = Tolerances.SOLVER_BAND_RIGHT if right is None else right

    def fits(self) -> bool:
        """True if every nonzero lies in the band or the dense trailing columns."""
        n = self.n
        rows, cols = np.nonzero(self.a)
        for i, j in zip(rows, cols):
            if j >= n - DENSE_COLUMNS:
                continue
            if j < i - self.left or j > i + self.right:
                return False
        return True

    def solve(self) -> np.ndarray:
        """Solves A*x = b in place. Raises SingularMatrixError on a tiny pivot."""
        a, b, n = self.a, self.b, self.n
        last, second = n - 1, n - 2

        # Forward elimination, restricted to the band
        for i in range(n):
            pivot = a[i, i]
            if abs(pivot) < Tolerances.SOLVER_PIVOT:
                raise SingularMatrixError(i, pivot)
            for ip in range(i + 1, min(n - 1, i + self.left) + 1):
                temp = a[ip, i] / pivot
                if temp == 0.0:
                    continue
                jp = i
                while jp < n - DENSE_COLUMNS and jp <= i + self.right:
                    a[ip, jp] -= temp * a[i, jp]
                    jp += 1
                if second > i:
                    a[ip, second] -= temp * a[i, second]
                if last > i:
                    a[ip, last] -= temp * a[i, last]
                b[ip] -= temp * b[i]

        # Back-substitution
        x = np.zeros(n)
        for i in range(n - 1, -1, -1):
            temp = b[i]
            if i < last:
                temp -= x[last] * a[i, last]
            if i < second:
                temp -= x[second] * a[i, second]
            for j in range(min(n - 3, i + self.right), i, -1):
                temp -= x[j] * a[i, j]
            x[i] = temp / a[i, i]
        return x
