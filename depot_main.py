"""
Depot - Command-Line Launcher

Run from a checkout without installing:

    python depot_main.py stow note < note.txt
    python depot_main.py fetch note
"""

import sys

from depot.cli import main


if __name__ == "__main__":
    sys.exit(main())
