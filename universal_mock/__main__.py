import sys

from universal_mock.server import main

sys.exit(main())
