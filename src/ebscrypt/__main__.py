import sys

from ebscrypt.cli import main

sys.exit(main())
