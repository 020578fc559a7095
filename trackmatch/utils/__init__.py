"""Utility helpers for trackmatch."""
