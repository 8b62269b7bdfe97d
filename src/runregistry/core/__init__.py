"""Shared primitives: errors, logging, settings and the ORM layer."""
