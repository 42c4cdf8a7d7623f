#!/usr/bin/env python3
"""
AR Cities - Command line entry point.

Run with:
    python -m ar_cities run --lat 39.996 --lon -74.062
"""

from .cli import main

if __name__ == "__main__":
    main()
