"""Allow running the sync worker as a module: python -m flowcore."""

from flowcore.runner import main

if __name__ == "__main__":
    main()
