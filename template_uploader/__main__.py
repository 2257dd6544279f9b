import sys

from template_uploader.cli import main

sys.exit(main())
