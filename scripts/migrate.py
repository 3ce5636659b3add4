"""Run Alembic migrations for the scheduling schema.

Usage:
    python scripts/migrate.py                  # upgrade to head
    python scripts/migrate.py downgrade <rev>  # step back to a revision
    python scripts/migrate.py create <message> # autogenerate a revision
"""

import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

ALEMBIC_INI = Path(__file__).resolve().parent.parent / "alembic.ini"


def _config() -> Config:
    config = Config(str(ALEMBIC_INI))
    config.set_main_option("script_location", str(ALEMBIC_INI.parent / "alembic"))
    return config


def main(argv: list[str]) -> int:
    config = _config()
    action = argv[0] if argv else "upgrade"

    try:
        if action == "upgrade":
            command.upgrade(config, argv[1] if len(argv) > 1 else "head")
        elif action == "downgrade" and len(argv) > 1:
            command.downgrade(config, argv[1])
        elif action == "create" and len(argv) > 1:
            command.revision(config, message=" ".join(argv[1:]), autogenerate=True)
        else:
            print(__doc__)
            return 2
    except Exception as e:
        print(f"✗ Migration {action} failed: {e}", file=sys.stderr)
        return 1

    print(f"✓ Migration {action} completed")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
