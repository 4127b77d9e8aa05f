import sys

from steelclock.main import main

sys.exit(main())
