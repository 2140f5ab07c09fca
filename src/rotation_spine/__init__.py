"""Rotation Spine -- durable ingestion and scoring of institutional ownership rotation."""

__version__ = "0.1.0"
