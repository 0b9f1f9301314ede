"""Read-only HTTP surface over resolved chunks."""
