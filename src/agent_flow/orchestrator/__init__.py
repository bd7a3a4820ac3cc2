"""Process-level plumbing: settings, structured logging and the CLI."""
