"""Domain models, ids, outcome taxonomy and pipeline events."""
