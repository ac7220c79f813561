"""Core infrastructure: settings, schema declaration, logging and inference."""
