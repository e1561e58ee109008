"""Random culprit / special-role assignment, fixed before any generation."""

from __future__ import annotations

import logging
import random

from casegen.config import SPECIAL_ROLE_OVERLAP_PROBABILITY
from casegen.pipeline.models import RoleAssignment

logger = logging.getLogger(__name__)


def assign(
    entity_count: int,
    special_role_required: bool = False,
    rng: random.Random | None = None,
    allow_overlap: bool = False,
) -> RoleAssignment:
    """Pick the culprit (and optionally the body discoverer) uniformly.

    Indices are 1-based.  When the special role must differ from the
    culprit it is redrawn until it does.  With ``allow_overlap`` the culprit
    is also the special role with probability SPECIAL_ROLE_OVERLAP_PROBABILITY.
    ``rng`` is injectable so tests can seed it; production uses a
    system-seeded generator.
    """
    if entity_count < 1:
        raise ValueError(f"entity_count must be >= 1, got {entity_count}")
    if special_role_required and not allow_overlap and entity_count == 1:
        raise ValueError("A distinct special role needs at least 2 entities")

    rng = rng or random.SystemRandom()
    culprit = rng.randint(1, entity_count)

    special = None
    if special_role_required:
        if allow_overlap and (entity_count == 1 or rng.random() < SPECIAL_ROLE_OVERLAP_PROBABILITY):
            special = culprit
        else:
            special = rng.randint(1, entity_count)
            while special == culprit:
                special = rng.randint(1, entity_count)

    assignment = RoleAssignment(culprit_index=culprit, special_role_index=special)
    logger.info(
        f"[roles] Culprit {assignment.culprit_id}"
        + (f", body discovered by {assignment.special_role_id}" if special else "")
    )
    return assignment
