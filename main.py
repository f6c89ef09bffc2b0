#!/usr/bin/env python3
import os
import sys

# Ensure project root is in path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from filebeam.cli import main

if __name__ == "__main__":
    sys.exit(main())
