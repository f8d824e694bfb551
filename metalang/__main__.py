"""
CLI entrypoint for `python -m metalang`.
"""

from .driver import main

if __name__ == "__main__":
    import sys
    sys.exit(main())
