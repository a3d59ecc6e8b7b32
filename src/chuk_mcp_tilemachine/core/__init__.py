"""Core rendering pipeline: sources, bounds, script compiler, engine."""
