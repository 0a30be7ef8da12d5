"""Land cover classifier and per-year classification."""
