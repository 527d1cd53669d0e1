"""Client-side view-model state and formatting helpers."""
