"""Dump-event detection and event studies around dump anchors."""
