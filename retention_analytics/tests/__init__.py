"""Test package for the retention analytics engine."""
