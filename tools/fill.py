"""Regenerate the call fixtures replayed by ``tools/consume.py``.

Only the per-call test modules record cases; the output directory is cleared
first so removed or renamed cases never linger.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
OUT = ROOT / "fixtures"
CALL_TESTS = "test_goal_*.py"


def main() -> int:
    modules = sorted(str(p) for p in (ROOT / "tests").glob(CALL_TESTS))
    if not modules:
        print(f"No call tests matching {CALL_TESTS}")
        return 1

    if OUT.exists():
        shutil.rmtree(OUT)

    env = dict(os.environ)
    env["PYTHONPATH"] = str(ROOT / "src")

    cmd = [sys.executable, "-m", "pytest", *modules, "-q", "--output", str(OUT)]
    print(f"Filling {len(modules)} modules into {OUT}")
    rc = subprocess.call(cmd, env=env, cwd=str(ROOT))
    if rc == 0:
        written = sorted(OUT.glob("**/*.json"))
        print(f"Wrote {len(written)} fixture files")
    return rc


if __name__ == "__main__":
    raise SystemExit(main())
