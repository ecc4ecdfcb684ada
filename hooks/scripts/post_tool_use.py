#!/usr/bin/env python3
"""Post-Tool-Use Policy Hook.

Runs post-processing after a file was written (formatter).
Never blocks on formatter problems; they are reported as info.
"""

import sys
from pathlib import Path

# Add hooks directory to path
sys.path.insert(0, str(Path(__file__).parent))

try:
    from policy_hooks import main
except ImportError as e:
    print(f"Error: Policy hook system unavailable: {e}", file=sys.stderr)
    sys.exit(1)


if __name__ == "__main__":
    sys.exit(main([*sys.argv[1:], "post-tool-use"]))
