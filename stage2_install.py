#!/usr/bin/env python3
"""Phase two of the installer, run inside the new root: stage2_install.py MODE DISK"""

import sys

from archstage.cli import stage2_main

if __name__ == "__main__":
    sys.exit(stage2_main(script=__file__))
