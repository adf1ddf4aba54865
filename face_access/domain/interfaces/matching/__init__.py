"""Matching package."""
