from __future__ import annotations

import logging

LOGGER = logging.getLogger(__name__)


def normalize_email(value: str) -> str:
    return str(value or "").strip().lower()


class DuplicateIndex:
    """Point-in-time set of known emails for one provisioning run.

    Seeded once from the relational store and grown as rows succeed. It is an
    early-exit check only; the store's unique constraint still decides.
    """

    def __init__(self, repo) -> None:
        self.repo = repo
        self._emails: set[str] = set()
        self._seeded = False

    def seed(self) -> int:
        if self._seeded:
            return len(self._emails)
        try:
            emails = self.repo.list_student_emails()
        except Exception:
            LOGGER.warning(
                "Could not seed duplicate index; continuing with an empty snapshot.",
                exc_info=True,
                extra={"event": "duplicate_index_seed_failed"},
            )
            emails = set()
        self._emails = {normalize_email(email) for email in emails if normalize_email(email)}
        self._seeded = True
        return len(self._emails)

    def contains(self, email: str) -> bool:
        return normalize_email(email) in self._emails

    def add(self, email: str) -> None:
        normalized = normalize_email(email)
        if normalized:
            self._emails.add(normalized)

    def __contains__(self, email: object) -> bool:
        return isinstance(email, str) and self.contains(email)

    def __len__(self) -> int:
        return len(self._emails)
