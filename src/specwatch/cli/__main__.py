"""
Allow running specctl as a module: python -m specwatch.cli
"""

import sys

from specwatch.cli.specctl import main

if __name__ == "__main__":
    sys.exit(main())
