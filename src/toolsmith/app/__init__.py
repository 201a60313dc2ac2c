"""Command-line surface: argument parsing and logging setup."""
