import sys

from eml2doc.cli import main

sys.exit(main())
