"""Imagery sources, compositing, indices and training samples."""
