"""Core infrastructure: request context, logging, errors and Cassandra access."""
