"""
Entry point for running skm as a module.

Usage:
    python -m skm [command] [options]
"""

from skm.cli import main

if __name__ == "__main__":
    main()
