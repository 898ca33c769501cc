"""Property-based tests for nrexport.

Property-based testing validates invariants that must hold for ALL inputs,
not just the specific examples we think of.

Test categories:
- nrexport/: translation, merge precedence, 413 splitting, retry determinism,
  counter delta conversion
"""
