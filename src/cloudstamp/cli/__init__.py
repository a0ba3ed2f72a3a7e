"""Command-line interface for cloudstamp."""
