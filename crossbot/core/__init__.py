"""Core models, configuration and the mode scheduler."""
