"""
Generate the branch list for the configured source roots. Run from the project root:

  python -m auditloop.generate
  python -m auditloop.generate --changed   # also write branches-changed.txt

Settings come from the environment or .env (START_DIRS, FILE_EXTENSIONS, MAX_LOC, ...).
"""

import argparse
import logging
import sys

from dotenv import load_dotenv

from auditloop.core.config import get_settings
from auditloop.services.branch_index import BranchIndex
from auditloop.services.partition import BranchListError, PartitionError, write_branch_list
from auditloop.services.pipeline import regenerate_branches
from auditloop.services.selector import select_incremental
from auditloop.services.store import StateStore, StoreBusyError
from auditloop.services.vcs import GitRepository

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Partition source roots into audit branches.")
    parser.add_argument(
        "--changed",
        action="store_true",
        help="Also write the branches changed since the oldest policy checkpoint",
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    try:
        branches = regenerate_branches(settings)
        if args.changed:
            store = StateStore.from_settings(settings)
            try:
                store.init_schema()
                changed = select_incremental(
                    store,
                    BranchIndex(branches),
                    GitRepository.from_settings(settings),
                    settings.extensions,
                    settings.exclude_paths,
                )
            finally:
                store.dispose()
            write_branch_list(settings.changed_branches_file, changed)
            logger.info(
                "Wrote %d changed branches to %s", len(changed), settings.changed_branches_file
            )
        return 0
    except (PartitionError, BranchListError, StoreBusyError) as e:
        logger.error("%s", e.message)
        return 1
    except Exception as e:
        logger.exception("Branch generation failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
