#!/usr/bin/env python3

import sys

from node_maintenance.cli import main

if __name__ == "__main__":
    sys.exit(main())
