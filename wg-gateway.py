#!/usr/bin/env python3
"""wg-gateway entry point for running from a checkout"""

import sys

from wg_gateway.cli import main

if __name__ == '__main__':
    sys.exit(main())
