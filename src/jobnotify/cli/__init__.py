"""Command-line interface for job-notify."""
