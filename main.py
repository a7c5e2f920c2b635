import sys

from mhtml_indexer.cli import main

if __name__ == "__main__":
    sys.exit(main())
