"""Entities package."""
