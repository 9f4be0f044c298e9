"""gpgtask entry point.

Supports: python -m gpgtask
"""

from .app import main

if __name__ == "__main__":
    main()
