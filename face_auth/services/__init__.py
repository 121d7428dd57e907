"""Matching, enrollment and recognition services."""
