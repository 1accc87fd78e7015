"""
Completion reconciliation.

Re-evaluates every story, sprint and epic of the given projects and
completes the ones whose children are all done. Repairs parents left
incomplete when a completion cascade failed.

Usage:
    python scripts/reconcile_completion.py PROJECT_ID [PROJECT_ID ...]
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sprintflow.engine import WorkEngine
from sprintflow.infra.config import get_settings
from sprintflow.infra.db import DatabaseEngine, init_db


async def reconcile(project_ids):
    settings = get_settings()
    await init_db(settings.get_db_url())
    engine = WorkEngine(default_policy=settings.default_policy)

    for project_id in project_ids:
        print(f"Checking completion for project {project_id}...")
        await engine.check_project_completion(project_id)

    await engine.shutdown()
    await DatabaseEngine.reset()
    print("Done.")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)
    logging.basicConfig(level=logging.INFO)
    try:
        ids = [int(arg) for arg in sys.argv[1:]]
    except ValueError:
        print("ERROR: project ids must be integers")
        sys.exit(1)
    asyncio.run(reconcile(ids))
