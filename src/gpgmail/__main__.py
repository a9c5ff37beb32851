#!/usr/bin/env python3
"""
Allow running gpgmail as a module: python -m gpgmail

This enables the following usage:
    python -m gpgmail [OPTIONS] COMMAND FILE

Which is equivalent to:
    gpgmail [OPTIONS] COMMAND FILE
"""

from gpgmail.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
