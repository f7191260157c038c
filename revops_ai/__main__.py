#!/usr/bin/env python3
"""Entry point for RevOps AI CLI."""

import sys
from revops_ai.cli.main import main

if __name__ == "__main__":
    sys.exit(main())
