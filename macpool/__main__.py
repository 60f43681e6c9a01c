import sys

from macpool.cli import manage_main

if __name__ == "__main__":
    sys.exit(manage_main())
