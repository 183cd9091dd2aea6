"""Stagecraft CLI subcommands."""
