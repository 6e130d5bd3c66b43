import sys

from homewizard_exporter.main import main

sys.exit(main())
