"""Test suite for scRNA-Explorer.

Test organization:
- fixtures/: Synthetic count matrices and an Enrichr stand-in
- unit/: Unit tests for individual modules
- integration/: Full pipeline runs from a 10x directory to the report

Run tests with:
    pytest tests/
    pytest tests/unit/
    pytest tests/ -v --tb=short
"""
