"""Task gating, submissions and reviews."""
