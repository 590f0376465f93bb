import sys

from tablemigrator.cli import main

sys.exit(main())
