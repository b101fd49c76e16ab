"""g-ssh-cmd 入口点。

支持: python -m g_ssh_cmd
"""

import sys

from .app import main

if __name__ == "__main__":
    sys.exit(main())
