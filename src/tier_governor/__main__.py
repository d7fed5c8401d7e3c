"""
Allow running the package as a module:
    python -m tier_governor run --source mock
    python -m tier_governor modes
"""

import sys

from .cli import main

if __name__ == '__main__':
    sys.exit(main())
