"""Test package marker for the mailbridge suites.

What:
  Marks ``tests`` as a package so pytest resolves the shared root
  ``conftest.py`` consistently for the ``unit`` and ``e2e`` directories.

Invariants & Safety:
  - Importing ``tests`` has no side effects.
"""
