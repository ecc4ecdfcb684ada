#!/usr/bin/env python3
"""Session Stop Policy Hook.

Sends "session finished" notifications (terminal title, sound, desktop).
"""

import sys
from pathlib import Path

# Add hooks directory to path
sys.path.insert(0, str(Path(__file__).parent))

try:
    from policy_hooks import main
except ImportError as e:
    # Stop Hook is fail-open (must not block session termination)
    print(f"Warning: Could not import policy hooks: {e}", file=sys.stderr)
    sys.exit(0)


if __name__ == "__main__":
    try:
        sys.exit(main([*sys.argv[1:], "stop"]))
    except Exception as e:
        print(f"Warning: Stop hook error: {type(e).__name__}: {e}", file=sys.stderr)
        sys.exit(0)
