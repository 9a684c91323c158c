"""Integration adapters package."""
