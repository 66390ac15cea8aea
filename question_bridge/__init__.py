"""Question Bridge backend: concept cards, source links and AI-assisted authoring."""
