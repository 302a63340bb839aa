"""Allow ``python -m certcycle``."""

from certcycle.cli.main import main

if __name__ == "__main__":
    main()
