"""Rotation scoring: sub-scorers and the composite score."""
