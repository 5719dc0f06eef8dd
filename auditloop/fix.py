"""
Fix pending audit issues in LOC-bounded batches. Run from the project root:

  python -m auditloop.fix [policy-name]
  python -m auditloop.fix --skip-commits [policy-name]

Without --skip-commits, fixes are committed on FIX_BRANCH and a batch whose
check never passes is reverted. With it, nothing is committed or reverted.
"""

import argparse
import logging
import sys

from dotenv import load_dotenv

from auditloop.core.config import Settings, get_settings
from auditloop.services.commands import collaborators_from_settings
from auditloop.services.policies import PolicyNotFoundError, require_policy
from auditloop.services.remediation import RemediationExecutor, run_fix_cycle
from auditloop.services.store import StateStore, StoreBusyError
from auditloop.services.vcs import GitRepository, VcsError

logger = logging.getLogger(__name__)


def build_executor(
    settings: Settings,
    store: StateStore,
    repo: GitRepository,
    skip_commits: bool,
) -> RemediationExecutor:
    """Executor wired to the configured fix, check and format commands and git."""
    parts = collaborators_from_settings(settings, repo)
    return RemediationExecutor(
        store,
        fixer=parts["fixer"],
        validator=parts["validator"],
        formatter=parts["formatter"],
        committer=parts["committer"],
        vcs=repo,
        max_retries=settings.MAX_FIX_RETRIES,
        skip_commits=skip_commits,
        truncate_chars=settings.OUTPUT_TRUNCATE_CHARS,
    )


def prepare_fix_branch(repo: GitRepository, settings: Settings, skip_commits: bool) -> None:
    if skip_commits:
        logger.warning("Commits disabled: fixes stay uncommitted and failed batches are not reverted")
        return
    repo.ensure_branch(settings.FIX_BRANCH)


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Fix pending audit issues batch by batch.")
    parser.add_argument("policy", nargs="?", help="Only fix issues found by this policy")
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
    skip_commits = settings.SKIP_COMMITS if args.skip_commits is None else args.skip_commits
    store = StateStore.from_settings(settings)
    try:
        if args.policy:
            require_policy(settings.policies_dir, args.policy)
            logger.info("Filtering fixes to policy: %s", args.policy)
        store.init_schema()
        repo = GitRepository.from_settings(settings)
        prepare_fix_branch(repo, settings, skip_commits)
        report = run_fix_cycle(
            store,
            build_executor(settings, store, repo, skip_commits),
            settings.project_root,
            settings.MAX_FIX_LOC,
            policy=args.policy,
        )
        print(report.summary.render() if report.summary else "")
        return 1 if report.batches_failed else 0
    except (PolicyNotFoundError, StoreBusyError, VcsError) as e:
        logger.error("%s", e.message)
        return 1
    except Exception as e:
        logger.exception("Fix run failed: %s", e)
        return 1
    finally:
        store.dispose()


if __name__ == "__main__":
    sys.exit(main())
