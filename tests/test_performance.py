"""
Performance Tests

Throughput of table building and hit correction with compiled kernels.
Run explicitly with: pytest tests/ -m performance
"""

import time

import numpy as np
import pytest

from tpcexb import ExactCorrector, GradientField


@pytest.mark.performance
class TestPerformance:
    """Build and correction throughput."""

    def test_table_build(self):
        """
        Requirement: 51^3 x 2 trajectories with 100 Euler steps in < 30 s.
        """
        field = GradientField(b0=5.0, gradient=1e-4, bx=0.3, by=-0.2)

        # Warmup JIT compilation
        ExactCorrector(field, 2.65, nodes=(3, 3, 3))

        start = time.time()
        ExactCorrector(field, 2.65, nodes=(51, 51, 51))
        elapsed = time.time() - start

        print(f"\n  51^3 table built in {elapsed:.2f} s")
        assert elapsed < 30.0, f"Table build too slow: {elapsed:.2f} s"

    def test_correction_throughput(self):
        """
        Requirement: 10^6 hits corrected in < 2 s.
        """
        field = GradientField(b0=5.0, gradient=1e-4, bx=0.3, by=-0.2)
        corrector = ExactCorrector(field, 2.65, nodes=(21, 21, 11))

        rng = np.random.default_rng(0)
        hits = rng.uniform(-250.0, 250.0, (1_000_000, 3))
        corrector.correct_many(hits[:10])

        start = time.time()
        corrected = corrector.correct_many(hits)
        elapsed = time.time() - start

        print(f"\n  {len(hits):,} hits corrected in {elapsed:.3f} s "
              f"({len(hits) / elapsed / 1e6:.1f} M hits/s)")
        assert corrected.shape == hits.shape
        assert elapsed < 2.0, f"Correction too slow: {elapsed:.2f} s"
