# -*- coding: utf-8 -*-

"""
Main entry point for running bundlekit from a source checkout.
"""

import sys

from bundlekit.cli import main

if __name__ == '__main__':
    sys.exit(main())
