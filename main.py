import sys

from decoy.__main__ import main


if __name__ == "__main__":
    sys.exit(main())
