"""Token accounting."""
