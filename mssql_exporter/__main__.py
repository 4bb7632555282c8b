import sys

from mssql_exporter.cli import main

sys.exit(main())
