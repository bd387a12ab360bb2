"""Command-line interface for arenabridge."""
