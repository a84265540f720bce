"""Allow running as ``python -m crewpilot``."""

from crewpilot.cli import main

if __name__ == "__main__":
    main()
