"""CI gate: the Alembic migration graph must be a single linear chain.

A second head (or a second root with down_revision = None) makes
`alembic upgrade head` ambiguous, which breaks both run_migrations.py and
the test session setup.

If a new migration is added, it MUST chain off the current head. Update
EXPECTED_HEAD in this script when it does.

Usage:
  python .github/scripts/ci_alembic_heads_check.py
"""
from __future__ import annotations

import sys
from pathlib import Path

api_root = Path(__file__).resolve().parents[2] / "apps" / "api"
sys.path.insert(0, str(api_root))

from alembic.config import Config
from alembic.script import ScriptDirectory

EXPECTED_HEAD = "001"


def main() -> int:
    cfg = Config(str(api_root / "alembic.ini"))
    cfg.set_main_option("script_location", str(api_root / "alembic"))

    script = ScriptDirectory.from_config(cfg)
    heads = script.get_heads()

    if heads != [EXPECTED_HEAD]:
        print("MIGRATION HEAD CHECK FAILED")
        print(f"  Expected head: {EXPECTED_HEAD}")
        print(f"  Actual heads:  {sorted(heads)}")
        print()
        print("  Fix: set down_revision to the current head, then bump EXPECTED_HEAD.")
        return 1

    revisions = list(script.walk_revisions())
    roots = [r.revision for r in revisions if r.down_revision is None]
    if len(roots) != 1:
        print("MIGRATION ROOT CHECK FAILED")
        print(f"  Expected exactly one root, found {len(roots)}: {sorted(roots)}")
        return 1

    print(f"Migration integrity check: OK (head {EXPECTED_HEAD}, {len(revisions)} revisions)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
