"""GistStore — the snapshot kept in a GitHub Gist.

Useful when the update job runs in CI (e.g. a scheduled GitHub Actions
workflow) with no persistent disk: the Gist survives between runs and every
revision of the snapshot stays in the Gist history.

Data format: a single file named ``prpulse_snapshot.json`` inside the Gist
holding the same document JsonFileStore writes. A Gist edit replaces the
file content in one API call, so readers never see a partial document.
"""

from __future__ import annotations

import json
import logging

from prpulse_store.base import BaseStore
from prpulse_store.errors import CorruptSnapshotError, PersistError, StoreError
from prpulse_store.models import HistorySnapshot

logger = logging.getLogger(__name__)

_GIST_FILENAME = "prpulse_snapshot.json"


class GistStore(BaseStore):
    """Stores the history snapshot in a GitHub Gist.

    The Gist ID is stored in .prpulse.yml under ``gist_id``. The token needs
    the ``gist`` scope; the built-in Actions GITHUB_TOKEN does not have it.
    """

    def __init__(self, gist_id: str, token: str):
        from github import Auth, Github

        self._gist_id = gist_id
        self._gh = Github(auth=Auth.Token(token))

    def _get_gist(self):
        return self._gh.get_gist(self._gist_id)

    def load(self, quarantine: bool = True) -> HistorySnapshot:
        import requests
        from github import GithubException

        try:
            gist = self._get_gist()
        except (GithubException, requests.RequestException) as e:
            raise StoreError(f"Could not read Gist {self._gist_id}: {e}") from e

        file_obj = gist.files.get(_GIST_FILENAME)
        if file_obj is None or not file_obj.content:
            return HistorySnapshot()
        try:
            return HistorySnapshot.from_dict(json.loads(file_obj.content))
        except (json.JSONDecodeError, CorruptSnapshotError) as e:
            # The previous content stays reachable through the Gist revisions.
            logger.error("Gist snapshot is corrupt (%s); using an empty history.", e)
            return HistorySnapshot()

    def save(self, snapshot: HistorySnapshot) -> None:
        import requests
        from github import GithubException, InputFileContent

        content = json.dumps(snapshot.to_dict(), indent=4) + "\n"
        try:
            gist = self._get_gist()
            gist.edit(files={_GIST_FILENAME: InputFileContent(content)})
        except (GithubException, requests.RequestException) as e:
            raise PersistError(f"Could not write snapshot to Gist {self._gist_id}: {e}") from e
        logger.debug("Saved snapshot to Gist %s.", self._gist_id)
