"""Batch-size policy for incremental update rounds.

While the server keeps reporting more pending changes, each new round first
stops fetching full records (ids-only diffs are cheaper per change) and then
raises the change cap. Once the ladder is exhausted the controller gives up on
incremental catch-up and invalidates the cache instead.
"""

from __future__ import annotations

from dataclasses import dataclass, replace


@dataclass(frozen=True)
class UpdatePolicy:
    """Arguments that shape one ``getMessageUpdates`` round."""

    fetch_records: bool
    max_changes: int


DEFAULT_POLICY = UpdatePolicy(fetch_records=True, max_changes=50)
MAX_CHANGES_LIMIT = 150


def escalate(policy: UpdatePolicy) -> UpdatePolicy | None:
    """Return the policy for the next round, or None when escalation is exhausted."""
    if policy.max_changes >= MAX_CHANGES_LIMIT:
        return None
    if policy.max_changes == DEFAULT_POLICY.max_changes:
        return UpdatePolicy(fetch_records=False, max_changes=100)
    return replace(policy, max_changes=MAX_CHANGES_LIMIT)
