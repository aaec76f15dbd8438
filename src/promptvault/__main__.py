import sys

from promptvault.cli import main

sys.exit(main())
