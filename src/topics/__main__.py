"""
Entry point for running topic discovery as a module.

Usage:
    python3 -m topics --org ORG_ID [--dry-run]
"""

from .discover import main

if __name__ == '__main__':
    main()
