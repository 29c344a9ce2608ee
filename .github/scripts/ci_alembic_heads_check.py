"""CI gate: assert the Alembic migration graph is a single linear chain.

Billing and coaching tables share one chain rooted at the profiles
migration. A second root (down_revision = None) or a forked head means two
migrations were written against the same parent and their RLS policies may
be applied in the wrong order.

Expected state:
  Single head: 3d4e5f6a7b8c  (stripe_events ledger)
  Single root: 0a1b2c3d4e5f  (profiles + RLS helper functions)

Usage:
  python .github/scripts/ci_alembic_heads_check.py
"""
from __future__ import annotations

import sys
from pathlib import Path

# Alembic needs the api directory on sys.path and the alembic.ini location.
api_root = Path(__file__).resolve().parents[2] / "apps" / "api"
sys.path.insert(0, str(api_root))

from alembic.config import Config
from alembic.script import ScriptDirectory

EXPECTED_HEADS = {"3d4e5f6a7b8c"}
EXPECTED_ROOTS = {"0a1b2c3d4e5f"}


def main() -> int:
    cfg = Config(str(api_root / "alembic.ini"))
    cfg.set_main_option("script_location", str(api_root / "alembic"))

    script = ScriptDirectory.from_config(cfg)
    heads = set(script.get_heads())

    if heads != EXPECTED_HEADS:
        print("MIGRATION HEAD CHECK FAILED")
        print(f"  Expected heads: {sorted(EXPECTED_HEADS)}")
        print(f"  Actual heads:   {sorted(heads)}")
        print()
        print("  Fix: chain the new migration off the current head, then update EXPECTED_HEADS.")
        return 1

    revisions = list(script.walk_revisions())
    roots = {r.revision for r in revisions if r.down_revision is None}

    if roots != EXPECTED_ROOTS:
        print("MIGRATION ROOT CHECK FAILED")
        print(f"  Expected roots: {sorted(EXPECTED_ROOTS)}")
        print(f"  Actual roots:   {sorted(roots)}")
        print()
        print("  Fix: new migrations must chain off an existing head, not use down_revision = None.")
        return 1

    print(f"Migration integrity check: OK ({len(heads)} head, {len(roots)} root, {len(revisions)} total)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
