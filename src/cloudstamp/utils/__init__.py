"""Utility helpers for cloudstamp."""
