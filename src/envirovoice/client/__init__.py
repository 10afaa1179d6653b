"""Client tools for exercising a running relay."""
