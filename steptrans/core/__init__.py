"""Core models, pipeline, scheduling and session persistence."""
