import sys

from pgbackup.cli import main

sys.exit(main())
