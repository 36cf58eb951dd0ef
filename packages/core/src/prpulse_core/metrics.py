"""Per-commit structural metric: how many subdirectories the tracked path holds."""

from __future__ import annotations

import logging

from prpulse_core.errors import UpstreamError
from prpulse_core.gh.base import BaseUpstream

logger = logging.getLogger(__name__)


def resolve_subdir_count(upstream: BaseUpstream, tracked_path: str, sha: str) -> int:
    """Count directory entries under ``tracked_path`` as of commit ``sha``.

    A tracked path that does not exist yet at that commit counts as zero. An
    upstream failure also yields zero so one bad commit cannot stall the
    whole cycle; it is logged as degraded so it stands apart from the
    not-present case. Anything else propagates.
    """
    try:
        entries = upstream.list_directory(tracked_path, sha)
    except UpstreamError as e:
        logger.warning("Subdir count for %s degraded to 0: %s", sha[:7], e)
        return 0

    if entries is None:
        logger.info("%s not present at %s; subdir count is 0.", tracked_path, sha[:7])
        return 0
    return sum(1 for entry in entries if entry.type == "dir")
