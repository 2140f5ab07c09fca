"""Command-line interface (``rotation-spine``)."""
