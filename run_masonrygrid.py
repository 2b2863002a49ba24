#!/usr/bin/env python3
"""
masonrygrid launcher script.

Run this from the project root without installing the package.
"""

import sys

if __name__ == '__main__':
    from masonrygrid.run_cli import main
    sys.exit(main())
