"""
SHOP - Command Line Interface

Main CLI entry point for the customer command pipeline.
"""
from cli.main import app, main

__all__ = ["app", "main"]
