import sys

from sqlserver_migrator.cli import main

sys.exit(main())
