"""Service layer orchestrating catalog resolution runs."""
