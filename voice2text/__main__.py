"""Allow running the tool with ``python -m voice2text``."""

from voice2text.cli import main

if __name__ == "__main__":
    main()
