"""Duplicate client detection and safe pairwise merging."""
