"""Utility helpers shared across tchantrace."""
