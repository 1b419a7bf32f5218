"""Last-known position persistence."""
