"""Small helpers shared across the indexer."""
