"""Entry point for ``python -m rcopy``."""

from .cli import main

if __name__ == "__main__":
    main()
