"""
tpcexb Test Suite

Tests organized by:
- test_field.py: Field sources, field maps and unit conversion
- test_motion.py: Langevin drift velocity
- test_integrator.py: Euler and reference trajectory integration
- test_grid.py: Grid derivation and table addressing
- test_corrector.py: Table building and hit correction
- test_diagnostics.py: Residual scans
- test_performance.py: Build and correction throughput
"""
