"""Stagecraft CLI - Typer app with rich output."""
