"""
Downloader Module Entry Point

Allows execution via: python -m pubchem_harvest.apps.downloader [options]

Delegates to the CLI's download command.
"""

import sys

from pubchem_harvest.cli import main

if __name__ == "__main__":
    sys.exit(main(["download", *sys.argv[1:]]))
