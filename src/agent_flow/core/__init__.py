"""Workflow definitions, step resolution, resume planning and the runner."""
