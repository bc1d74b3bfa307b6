"""
Transformer Module Entry Point

Allows execution via:
    python -m pubchem_harvest.apps.transformer               # full molecular records
    python -m pubchem_harvest.apps.transformer -n absorption # one filter profile
"""

import sys

from pubchem_harvest.cli import main

if __name__ == "__main__":
    args = sys.argv[1:]
    command = "filter" if ("-n" in args or "--filter-name" in args) else "save"
    sys.exit(main([command, *args]))
