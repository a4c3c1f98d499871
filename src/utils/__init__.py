"""Utility helpers for the namespace harness."""
