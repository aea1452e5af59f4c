import sys

from viraltube.cli import main

sys.exit(main())
