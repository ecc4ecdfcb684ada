#!/usr/bin/env python3
"""Pre-Tool-Use Policy Hook.

Checks a proposed Write/Edit/MultiEdit/Bash action before it runs:
1. Forbidden keyword and silent default values
2. Forced process termination in production code
3. Hardcoded secrets
4. Dangerous shell commands

Design Principles:
- Fail-Close: If the hook system fails, block the operation (exit 2)
- Thin wrapper: All logic in policy_hooks.run_hook()
"""

import sys
from pathlib import Path

# Add hooks directory to path
sys.path.insert(0, str(Path(__file__).parent))

try:
    from policy_hooks import main
except ImportError as e:
    # Fail-close: policy system unavailable = block all
    print(f"[BLOCKED] Policy hook system unavailable: {e}", file=sys.stderr)
    sys.exit(2)


if __name__ == "__main__":
    try:
        sys.exit(main([*sys.argv[1:], "pre-tool-use"]))
    except Exception as e:
        print(f"[BLOCKED] Policy hook error: {type(e).__name__}: {e}", file=sys.stderr)
        sys.exit(2)
