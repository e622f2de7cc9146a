"""
fieldops setup script.
Run once after cloning: python scripts/setup.py
"""

import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).parents[1]


def run(cmd: list[str], **kwargs):
    print(f"  $ {' '.join(cmd)}")
    result = subprocess.run(cmd, **kwargs)
    if result.returncode != 0:
        print(f"[ERROR] Command failed: {' '.join(cmd)}")
        sys.exit(result.returncode)


def main():
    print("=== fieldops Setup ===\n")

    # 1. Create .env from example
    env_path = ROOT / ".env"
    env_example = ROOT / ".env.example"
    if not env_path.exists():
        import shutil
        shutil.copy(env_example, env_path)
        print("[OK] Created .env: set DB_MODE / DB_SERVER_URL for remote mode\n")
    else:
        print("[--] .env already exists\n")

    # 2. Install the package with its test extra
    print("[1/2] Installing fieldops...")
    run([sys.executable, "-m", "pip", "install", "-e", f"{ROOT}[test]"])

    # 3. Reconcile the local database
    print("\n[2/2] Preparing local database...")
    sys.path.insert(0, str(ROOT))
    from fieldops.storage.database import init_db
    result = init_db()
    if not result.connected:
        print("  [WARNING] Database unreachable:")
        for warning in result.warnings:
            print(f"    {warning}")
        sys.exit(1)
    print(f"  Database ready ({len(result.applied)} change(s), {len(result.warnings)} warning(s)).")

    print("\n=== Setup complete ===")
    print("Next steps:")
    print("  1. Edit .env: DB_MODE=Remote and DB_SERVER_URL=http://host:port to sync with a server")
    print("  2. Run: fieldops mode      (check which implementation each capability uses)")
    print("  3. Run: fieldops server    (local status API + background sync)")


if __name__ == "__main__":
    main()
