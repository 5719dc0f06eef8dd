"""
Run the whole pipeline: generate branches, audit every policy, fix, checkpoint.

  python -m auditloop.run_all              # incremental: branches changed since checkpoints
  python -m auditloop.run_all --all        # audit every branch
  python -m auditloop.run_all --diff [REF] # only branches changed since REF (default HEAD); no checkpoints
  python -m auditloop.run_all --combined   # one audit per branch covering all policies
"""

import argparse
import logging
import sys

from dotenv import load_dotenv

from auditloop.core.config import get_settings
from auditloop.fix import build_executor, prepare_fix_branch
from auditloop.services.audit import AuditorError
from auditloop.services.commands import collaborators_from_settings
from auditloop.services.partition import BranchListError, PartitionError
from auditloop.services.pipeline import run_pipeline
from auditloop.services.policies import PolicyNotFoundError
from auditloop.services.store import StateStore, StoreBusyError
from auditloop.services.vcs import GitRepository, VcsError

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Audit then fix the configured source tree.")
    scope = parser.add_mutually_exclusive_group()
    scope.add_argument("--all", action="store_true", help="Audit every branch, ignoring checkpoints")
    scope.add_argument(
        "--diff",
        nargs="?",
        const="HEAD",
        metavar="REF",
        help="Audit only branches changed since REF (default HEAD); checkpoints are not updated",
    )
    parser.add_argument("--combined", action="store_true", help="Audit all policies in one pass per branch")
    parser.add_argument("--skip-fixes", action="store_true", help="Stop after auditing")
    parser.add_argument(
        "--skip-commits",
        "--dangerously-skip-commits",
        dest="skip_commits",
        action="store_true",
        default=None,
        help="Neither commit fixes nor revert failed batches (default: SKIP_COMMITS)",
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    mode = "diff" if args.diff is not None else "full" if args.all else "incremental"
    skip_commits = settings.SKIP_COMMITS if args.skip_commits is None else args.skip_commits

    store = StateStore.from_settings(settings)
    try:
        store.init_schema()
        repo = GitRepository.from_settings(settings)
        executor = None
        if not args.skip_fixes:
            prepare_fix_branch(repo, settings, skip_commits)
            executor = build_executor(settings, store, repo, skip_commits)
        report = run_pipeline(
            settings,
            store,
            repo,
            collaborators_from_settings(settings, repo)["auditor"],
            executor,
            mode=mode,
            combined=args.combined,
            diff_ref=args.diff,
        )
        print(report.summary.render() if report.summary else "")
        failed = len(report.failed_scans) + (report.fix_report.batches_failed if report.fix_report else 0)
        return 1 if failed else 0
    except (PartitionError, BranchListError, PolicyNotFoundError, StoreBusyError, VcsError, AuditorError) as e:
        logger.error("%s", e.message)
        return 1
    except Exception as e:
        logger.exception("Pipeline failed: %s", e)
        return 1
    finally:
        store.dispose()


if __name__ == "__main__":
    sys.exit(main())
