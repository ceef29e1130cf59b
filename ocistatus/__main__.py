import sys

from ocistatus.cli import main

sys.exit(main())
