"""
Module entry-point that makes the package runnable with

    python -m studiokit

The behaviour is identical to the *studio* console script.
"""

from studiokit.cli import main

if __name__ == "__main__":  # pragma: no cover
    main()
