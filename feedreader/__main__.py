import sys

from feedreader.runner import main

sys.exit(main())
