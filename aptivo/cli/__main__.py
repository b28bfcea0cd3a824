import sys

from aptivo.cli import main

sys.exit(main())
