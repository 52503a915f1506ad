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

"""Per-repository trust store.

Hooks execute code that ships inside a repository, so nothing runs from a
lifecycle trigger until the user has said the repository may run it. The
store maps a repository identity (its shared git directory) to a trust
level and is persisted as JSON in the user's config directory.

Lookup order for a repository: explicit entry, then the first matching
glob pattern, then the database default (``deny``).
"""

from __future__ import annotations

import fnmatch
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ValidationError

from treehouse.git.repo import GitError, git_common_dir
from treehouse.home import get_trust_db_path

logger = logging.getLogger(__name__)

TRUST_DB_VERSION = 1


class TrustStoreError(Exception):
    """Raised when the trust database cannot be read or written."""

    pass


class TrustLevel(str, Enum):
    DENY = "deny"
    PROMPT = "prompt"
    ALLOW = "allow"


class TrustEntry(BaseModel):
    level: TrustLevel
    granted_at: str
    granted_by: str = "user"


class TrustPattern(BaseModel):
    pattern: str
    level: TrustLevel
    comment: Optional[str] = None


class TrustDatabase(BaseModel):
    version: int = TRUST_DB_VERSION
    default_level: TrustLevel = TrustLevel.DENY
    repositories: Dict[str, TrustEntry] = {}
    patterns: List[TrustPattern] = []


@dataclass
class TrustStatus:
    identity: str
    level: TrustLevel
    explicit: bool
    entry: TrustEntry | None = None
    pattern: str | None = None


def repository_identity(path: Path) -> str:
    """Stable identity for the repository containing path.

    Every worktree of a repository shares one git common directory, so
    trust granted from any worktree applies to all of them.
    """
    try:
        return str(git_common_dir(path).resolve())
    except GitError:
        return str(Path(path).resolve())


def _key(identity: str | Path) -> str:
    return str(identity)


class TrustStore:
    """JSON-backed trust database.

    The store rereads the file on every query so that a long-lived process
    sees changes made by the CLI; writes go to a temporary file that is
    renamed over the database.
    """

    def __init__(self, path: Path | None = None):
        self.path = path or get_trust_db_path()

    def load(self) -> TrustDatabase:
        if not self.path.exists():
            return TrustDatabase()
        try:
            content = self.path.read_text()
        except OSError as e:
            raise TrustStoreError(f"Error reading {self.path}: {e}") from e
        if not content.strip():
            return TrustDatabase()
        try:
            return TrustDatabase.model_validate_json(content)
        except ValidationError as e:
            raise TrustStoreError(f"Invalid trust database {self.path}: {e}") from e

    def save(self, db: TrustDatabase) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=".trust-", suffix=".json", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w") as f:
                f.write(db.model_dump_json(indent=2))
                f.write("\n")
            os.replace(tmp_name, self.path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise TrustStoreError(f"Error writing {self.path}: {e}") from e

    def status(self, identity: str | Path) -> TrustStatus:
        key = _key(identity)
        db = self.load()
        entry = db.repositories.get(key)
        if entry is not None:
            return TrustStatus(identity=key, level=entry.level, explicit=True, entry=entry)
        for rule in db.patterns:
            if fnmatch.fnmatchcase(key, rule.pattern):
                return TrustStatus(
                    identity=key, level=rule.level, explicit=False, pattern=rule.pattern
                )
        return TrustStatus(identity=key, level=db.default_level, explicit=False)

    def get_level(self, identity: str | Path) -> TrustLevel:
        return self.status(identity).level

    def set_level(
        self, identity: str | Path, level: TrustLevel, granted_by: str = "user"
    ) -> TrustEntry:
        db = self.load()
        entry = TrustEntry(
            level=level,
            granted_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
            granted_by=granted_by,
        )
        db.repositories[_key(identity)] = entry
        self.save(db)
        logger.info("Trust for %s set to %s", identity, level.value)
        return entry

    def reset(self, identity: str | Path) -> bool:
        """Forget the explicit entry for identity. Returns False if none existed."""
        db = self.load()
        if db.repositories.pop(_key(identity), None) is None:
            return False
        self.save(db)
        logger.info("Trust for %s reset", identity)
        return True

    def reset_all(self) -> int:
        """Forget every explicit entry. Returns the number removed."""
        db = self.load()
        count = len(db.repositories)
        if count:
            db.repositories = {}
            self.save(db)
        return count

    def list_entries(self) -> list[tuple[str, TrustEntry]]:
        return sorted(self.load().repositories.items())

    def list_patterns(self) -> list[TrustPattern]:
        return list(self.load().patterns)

    def add_pattern(
        self, pattern: str, level: TrustLevel, comment: str | None = None
    ) -> None:
        """Add or replace a glob rule matched against repository identities."""
        db = self.load()
        db.patterns = [p for p in db.patterns if p.pattern != pattern]
        db.patterns.append(TrustPattern(pattern=pattern, level=level, comment=comment))
        self.save(db)

    def remove_pattern(self, pattern: str) -> bool:
        db = self.load()
        kept = [p for p in db.patterns if p.pattern != pattern]
        if len(kept) == len(db.patterns):
            return False
        db.patterns = kept
        self.save(db)
        return True
