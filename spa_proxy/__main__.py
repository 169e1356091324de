import sys

from spa_proxy.cli import main

sys.exit(main())
