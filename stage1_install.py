#!/usr/bin/env python3
"""Phase one of the installer: partition, install the base system, hand off."""

import sys

from archstage.cli import main

if __name__ == "__main__":
    sys.exit(main(script=__file__))
