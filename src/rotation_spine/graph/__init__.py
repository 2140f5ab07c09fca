"""Rotation graph: edge building, neighborhood queries and explanations."""
