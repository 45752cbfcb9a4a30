"""Engine facade, error surface, call logging, and lifecycle middleware."""
