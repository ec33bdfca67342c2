import sys

from cargoflow.cli import main

sys.exit(main())
