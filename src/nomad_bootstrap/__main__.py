import sys

from nomad_bootstrap.cli import main

sys.exit(main())
