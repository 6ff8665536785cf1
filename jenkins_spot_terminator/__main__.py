import sys

from jenkins_spot_terminator.cli import main

sys.exit(main())
