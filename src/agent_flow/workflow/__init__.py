"""Step lifecycle: events, transitions, decision policy and artifact paths."""
