# Copyright 2026 Pennyworth Technologies, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Tests for trust.py."""

import json
import subprocess

import pytest

from treehouse.trust import (
    TrustLevel,
    TrustStore,
    TrustStoreError,
    repository_identity,
)


@pytest.fixture
def store(tmp_path):
    return TrustStore(tmp_path / "trust" / "trust.json")


class TestTrustStore:
    def test_absent_repository_is_denied(self, store):
        assert store.get_level("/repos/a/.git") is TrustLevel.DENY
        assert not store.path.exists()

    def test_set_and_get(self, store):
        store.set_level("/repos/a/.git", TrustLevel.ALLOW)
        assert store.get_level("/repos/a/.git") is TrustLevel.ALLOW
        assert store.get_level("/repos/b/.git") is TrustLevel.DENY

    def test_set_replaces_previous_level(self, store):
        store.set_level("/repos/a/.git", TrustLevel.ALLOW)
        store.set_level("/repos/a/.git", TrustLevel.PROMPT)
        assert store.get_level("/repos/a/.git") is TrustLevel.PROMPT
        assert len(store.list_entries()) == 1

    def test_reset_reverts_to_default(self, store):
        store.set_level("/repos/a/.git", TrustLevel.ALLOW)
        assert store.reset("/repos/a/.git") is True
        assert store.get_level("/repos/a/.git") is TrustLevel.DENY
        assert store.status("/repos/a/.git").explicit is False

    def test_reset_missing_entry(self, store):
        assert store.reset("/repos/nothing/.git") is False

    def test_reset_all(self, store):
        store.set_level("/repos/a/.git", TrustLevel.ALLOW)
        store.set_level("/repos/b/.git", TrustLevel.DENY)
        assert store.reset_all() == 2
        assert store.list_entries() == []

    def test_status_explicit_entry(self, store):
        store.set_level("/repos/a/.git", TrustLevel.PROMPT, granted_by="cli")
        status = store.status("/repos/a/.git")
        assert status.explicit is True
        assert status.level is TrustLevel.PROMPT
        assert status.entry.granted_by == "cli"

    def test_persisted_format(self, store):
        store.set_level("/repos/a/.git", TrustLevel.ALLOW)
        data = json.loads(store.path.read_text())
        assert data["version"] == 1
        assert data["default_level"] == "deny"
        assert data["repositories"]["/repos/a/.git"]["level"] == "allow"
        assert "granted_at" in data["repositories"]["/repos/a/.git"]

    def test_survives_new_instance(self, store):
        store.set_level("/repos/a/.git", TrustLevel.ALLOW)
        assert TrustStore(store.path).get_level("/repos/a/.git") is TrustLevel.ALLOW

    def test_corrupt_file_raises(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text("{broken")
        with pytest.raises(TrustStoreError):
            store.get_level("/repos/a/.git")

    def test_empty_file_is_empty_database(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text("")
        assert store.get_level("/repos/a/.git") is TrustLevel.DENY

    def test_no_temp_files_left_behind(self, store):
        store.set_level("/repos/a/.git", TrustLevel.ALLOW)
        assert [p.name for p in store.path.parent.iterdir()] == ["trust.json"]


class TestTrustPatterns:
    def test_pattern_applies_when_no_entry(self, store):
        store.add_pattern("/work/*", TrustLevel.ALLOW, comment="company repos")
        assert store.get_level("/work/api/.git") is TrustLevel.ALLOW
        status = store.status("/work/api/.git")
        assert status.explicit is False
        assert status.pattern == "/work/*"

    def test_explicit_entry_beats_pattern(self, store):
        store.add_pattern("/work/*", TrustLevel.ALLOW)
        store.set_level("/work/api/.git", TrustLevel.DENY)
        assert store.get_level("/work/api/.git") is TrustLevel.DENY

    def test_remove_pattern(self, store):
        store.add_pattern("/work/*", TrustLevel.ALLOW)
        assert store.remove_pattern("/work/*") is True
        assert store.remove_pattern("/work/*") is False
        assert store.get_level("/work/api/.git") is TrustLevel.DENY


class TestRepositoryIdentity:
    def test_worktrees_share_identity(self, git_repo, tmp_path):
        other = tmp_path / "feature-wt"
        subprocess.run(
            ["git", "worktree", "add", "-b", "feature", str(other)],
            cwd=git_repo, check=True, capture_output=True,
        )
        assert repository_identity(git_repo) == repository_identity(other)
        assert repository_identity(git_repo) == str((git_repo / ".git").resolve())

    def test_outside_repository_uses_path(self, tmp_path):
        plain = tmp_path / "plain"
        plain.mkdir()
        assert repository_identity(plain) == str(plain.resolve())
