import sys

from fitsize.cli import main


if __name__ == "__main__":
    sys.exit(main())
