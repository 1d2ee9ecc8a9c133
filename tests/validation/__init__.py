"""
Tests for the forge-vs-R validation harness.

Covers tolerances, statistical tests, fixture generation, test-suite
loading, engine wrappers, the pipeline and reporting.
"""
