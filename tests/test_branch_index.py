"""Unit tests for auditloop.services.branch_index: longest-prefix ownership with flat semantics."""

import unittest

from auditloop.schemas.branch import Branch
from auditloop.services.branch_index import BranchIndex


class TestLongestPrefix(unittest.TestCase):
    def setUp(self) -> None:
        self.index = BranchIndex(
            [
                Branch(path="src", is_flat=True),
                Branch(path="src/lib"),
                Branch(path="src/lib/utils"),
            ]
        )

    def test_deepest_branch_wins(self) -> None:
        self.assertEqual(self.index.file_to_branch("src/lib/utils/format.ts"), "src/lib/utils")

    def test_flat_branch_claims_immediate_file(self) -> None:
        self.assertEqual(self.index.file_to_branch("src/index.ts"), "src")

    def test_recursive_branch_claims_its_own_files(self) -> None:
        self.assertEqual(self.index.file_to_branch("src/lib/x.ts"), "src/lib")

    def test_unclaimed_file_returns_empty(self) -> None:
        self.assertEqual(self.index.file_to_branch("docs/readme.ts"), "")
        self.assertEqual(self.index.file_to_branch("srcx/a.ts"), "")
        self.assertIsNone(self.index.owner("docs/readme.ts"))

    def test_leading_dot_slash_is_ignored(self) -> None:
        self.assertEqual(self.index.file_to_branch("./src/lib/x.ts"), "src/lib")

    def test_lookups_are_stable(self) -> None:
        first = [self.index.file_to_branch("src/lib/x.ts") for _ in range(3)]
        self.assertEqual(first, ["src/lib"] * 3)
        self.assertEqual(len(self.index), 3)


class TestFlatExclusion(unittest.TestCase):
    def test_flat_branch_does_not_claim_subdirectory_files(self) -> None:
        index = BranchIndex(
            [
                Branch(path="src/components", is_flat=True),
                Branch(path="src/components/bookshop"),
            ]
        )
        self.assertEqual(
            index.file_to_branch("src/components/bookshop/catalog.tsx"),
            "src/components/bookshop",
        )
        self.assertEqual(index.file_to_branch("src/components/button.tsx"), "src/components")

    def test_flat_branch_alone_leaves_nested_file_unclaimed(self) -> None:
        index = BranchIndex([Branch(path="src/components", is_flat=True)])
        self.assertEqual(index.file_to_branch("src/components/bookshop/catalog.tsx"), "")


class TestRootBranch(unittest.TestCase):
    def test_recursive_root_claims_everything(self) -> None:
        index = BranchIndex([Branch(path=".")])
        self.assertEqual(index.file_to_branch("a.ts"), ".")
        self.assertEqual(index.file_to_branch("deep/nested/a.ts"), ".")

    def test_flat_root_claims_only_top_level_files(self) -> None:
        index = BranchIndex([Branch(path=".", is_flat=True), Branch(path="lib")])
        self.assertEqual(index.file_to_branch("a.ts"), ".")
        self.assertEqual(index.file_to_branch("lib/a.ts"), "lib")
        self.assertEqual(index.file_to_branch("other/a.ts"), "")

    def test_real_branch_beats_root(self) -> None:
        index = BranchIndex([Branch(path="."), Branch(path="lib")])
        self.assertEqual(index.file_to_branch("lib/a.ts"), "lib")


if __name__ == "__main__":
    unittest.main()
