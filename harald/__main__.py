"""
Harald Module Entry Point
==========================

Allows running the Harald CLI via: python -m harald
"""

from harald.cli import main

if __name__ == "__main__":
    main()
