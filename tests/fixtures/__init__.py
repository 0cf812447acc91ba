"""Shared test doubles for the Brain test suite."""
