"""In-memory identity gallery with cached matcher snapshots.

The store stands in front of whatever document store holds the enrolled
players. It owns the only mutable copy of the gallery; every change bumps a
version, and ``matcher()`` rebuilds its matcher lazily when the version it
was built from is stale.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any

from facegate.core.enrollment import DuplicatePolicy, EnrollmentCheck, check_enrollment
from facegate.core.errors import DuplicateIdentity, IdentityExists, UnknownIdentity
from facegate.core.matcher import IdentityMatcher, MatchConfig, create_matcher
from facegate.core.types import IdentityRecord

logger = logging.getLogger(__name__)


class GalleryStore:
    """Thread-safe registry of enrolled identities."""

    def __init__(
        self,
        match_config: MatchConfig | None = None,
        duplicate_config: MatchConfig | None = None,
    ) -> None:
        self._match_config = match_config or MatchConfig()
        self._duplicate_config = duplicate_config or self._match_config
        self._lock = threading.Lock()
        self._records: dict[str, IdentityRecord] = {}
        self._version = 0
        self._matcher: IdentityMatcher | None = None
        self._matcher_version = -1

    # -- Read access --------------------------------------------------------

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def records(self) -> list[IdentityRecord]:
        with self._lock:
            return list(self._records.values())

    def get(self, identity_id: str) -> IdentityRecord:
        with self._lock:
            try:
                return self._records[identity_id]
            except KeyError:
                raise UnknownIdentity(identity_id) from None

    def matcher(self) -> IdentityMatcher:
        """Return a matcher over the current gallery, rebuilding it if stale."""
        with self._lock:
            if self._matcher is None or self._matcher_version != self._version:
                self._matcher = create_matcher(list(self._records.values()), self._match_config)
                self._matcher_version = self._version
                logger.info("Rebuilt matcher at gallery version %d (%d identities)", self._version, self._matcher.size)
            return self._matcher

    # -- Write access -------------------------------------------------------

    def enroll(
        self,
        record: IdentityRecord,
        policy: DuplicatePolicy = DuplicatePolicy.BLOCK,
    ) -> EnrollmentCheck:
        """Add a new identity after checking the gallery for the same face.

        Raises:
            IdentityExists: If the id is already enrolled.
            DimensionMismatch: If the embedding length differs from the gallery's.
            DuplicateIdentity: If the face matches an enrolled identity under
                ``DuplicatePolicy.BLOCK``.
        """
        with self._lock:
            if record.id in self._records:
                raise IdentityExists(record.id)
            # Built fresh under the lock so the check and the append see the same gallery.
            duplicate_matcher = create_matcher(list(self._records.values()), self._duplicate_config)
            check = check_enrollment(duplicate_matcher, record.embedding, policy)
            if not check.allowed:
                raise DuplicateIdentity(check.reason or "", check.match)
            self._records[record.id] = record
            self._version += 1
        logger.info("Enrolled identity %s (duplicate=%s)", record.id, check.duplicate)
        return check

    def replace_embedding(
        self,
        identity_id: str,
        embedding: object,
        policy: DuplicatePolicy = DuplicatePolicy.BLOCK,
    ) -> IdentityRecord:
        """Re-enroll an identity with a new reference embedding.

        The new face is checked against every other identity, as ``enroll`` does.

        Raises:
            UnknownIdentity: If the id is not enrolled.
            DimensionMismatch: If the embedding length differs from the gallery's.
            DuplicateIdentity: If the face matches another identity under
                ``DuplicatePolicy.BLOCK``.
        """
        with self._lock:
            current = self._records.get(identity_id)
            if current is None:
                raise UnknownIdentity(identity_id)
            updated = IdentityRecord(
                id=identity_id,
                embedding=embedding,  # type: ignore[arg-type]
                metadata=current.metadata,
            )
            others = [r for r in self._records.values() if r.id != identity_id]
            check = check_enrollment(create_matcher(others, self._duplicate_config), updated.embedding, policy)
            if not check.allowed:
                raise DuplicateIdentity(check.reason or "", check.match)
            self._records[identity_id] = updated
            self._version += 1
        logger.info("Re-enrolled identity %s (duplicate=%s)", identity_id, check.duplicate)
        return updated

    def remove(self, identity_id: str) -> None:
        with self._lock:
            if self._records.pop(identity_id, None) is None:
                raise UnknownIdentity(identity_id)
            self._version += 1
        logger.info("Removed identity %s", identity_id)

    # -- Snapshots ----------------------------------------------------------

    def load(self, path: str | Path) -> int:
        """Replace the gallery with the records in a JSON snapshot.

        Bad entries are logged and skipped, as the matcher would skip them.
        Returns the number of records loaded.
        """
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if isinstance(data, dict):
            data = data.get("identities", [])
        if not isinstance(data, list):
            raise ValueError(f"Gallery snapshot {path} must hold a list of identities")

        # Reuse the matcher's validation so load and match agree on what is usable.
        loaded = create_matcher(data, self._match_config).records
        with self._lock:
            self._records = {record.id: record for record in loaded}
            self._version += 1
        logger.info("Loaded %d identities from %s (%d skipped)", len(loaded), path, len(data) - len(loaded))
        return len(loaded)

    def save(self, path: str | Path) -> None:
        payload: dict[str, Any] = {"identities": [r.to_dict() for r in self.records()]}
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(target.suffix + ".tmp")
        tmp.write_text(json.dumps(payload), encoding="utf-8")
        tmp.replace(target)
        logger.info("Saved %d identities to %s", len(payload["identities"]), target)

