#!/usr/bin/env python3
"""Main entry point for the swap station engine.

This file allows running the application directly with:
    python main.py serve

For full CLI usage, use:
    swapstation --help
"""

from swapstation.cli import cli

if __name__ == "__main__":
    cli()
