"""Repository resolution backends."""
