import sys

from google_tasks_mcp.cli import main

sys.exit(main())
