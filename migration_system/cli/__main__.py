"""
CLI Main Module

Entry point for running the migration system CLI as a module.
"""

from .main import main

if __name__ == "__main__":
    exit(main())
