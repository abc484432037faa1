import sys

from tarchain.cli import main

sys.exit(main())
