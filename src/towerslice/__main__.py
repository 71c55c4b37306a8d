import sys

from .slicing import main

sys.exit(main())
