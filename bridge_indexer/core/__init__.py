"""Core infrastructure: configuration, logging, exceptions and database."""
