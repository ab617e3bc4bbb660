"""
Pytest configuration and fixtures for adomcp tests.
"""

import itertools
import os
import pytest
from unittest.mock import patch

from adomcp.ado_api import NULL_OBJECT_ID
from adomcp.errors import BranchNotFound, FileAlreadyExists, FileNotFound, StaleBranchTip


@pytest.fixture(autouse=True)
def setup_test_environment():
    """Set up test environment variables to prevent interactive prompts."""
    test_env = {
        "AZURE_DEVOPS_ORG": "contoso",
        "AZURE_DEVOPS_PAT": "test_pat",
        "LOG_LEVEL": "WARNING",  # Reduce log noise during tests
        "FEATURE_SWITCH_ROOT": "Features/Configuration/Features",
        "FEATURE_REPOSITORY_ID": "feature-repo",
    }

    with patch.dict(os.environ, test_env):
        # Mock load_dotenv to prevent loading actual .env files
        with patch("adomcp.config.load_dotenv"):
            yield


@pytest.fixture
def clean_environment():
    """Fixture to provide a clean environment for tests that need it."""
    with patch.dict(os.environ, {}, clear=True):
        yield


class RecordingSink:
    """Event sink that keeps every event."""

    def __init__(self):
        self.events = []

    def record(self, event):
        self.events.append(event)

    @property
    def names(self):
        return [event.name for event in self.events]


class FakeGitClient:
    """
    In-memory Azure DevOps Git repository.

    Branch tips map to commit ids and every commit holds a full snapshot of
    the tree, so reads at a commit id see exactly that commit's content.
    Pushes are rejected with ``StaleBranchTip`` when ``oldObjectId`` is not
    the current tip, like the real service.
    """

    def __init__(self):
        self._ids = itertools.count(1)
        self.commits = {}
        self.tips = {}
        self.pushes = []
        self.ref_updates = []
        self.fetches = []
        self.primary_error = None
        self.fallback_error = None
        self.before_push = None

    def _new_commit(self, tree):
        commit_id = f"{next(self._ids):040x}"
        self.commits[commit_id] = dict(tree)
        return commit_id

    def add_branch(self, branch, files=None):
        self.tips[branch] = self._new_commit(files or {})
        return self.tips[branch]

    def commit_directly(self, branch, path, content):
        """Simulate another writer moving the branch."""
        tree = dict(self.commits[self.tips[branch]])
        tree[path] = content.encode("utf-8") if isinstance(content, str) else content
        self.tips[branch] = self._new_commit(tree)
        return self.tips[branch]

    def file_at_tip(self, branch, path):
        return self.commits[self.tips[branch]][path]

    def resolve_branch(self, repository_id, branch):
        return self.tips.get(branch)

    def _read(self, path, version):
        tree = self.commits.get(version)
        if tree is None or path not in tree:
            raise FileNotFound(f"{path} not found at {version}")
        return tree[path]

    def get_item_content(self, repository_id, path, version, version_type="commit"):
        self.fetches.append(("items", path, version))
        if self.primary_error is not None:
            raise self.primary_error
        return self._read(path, version)

    def get_item_content_via_metadata(self, repository_id, path, version, version_type="commit"):
        self.fetches.append(("items-metadata", path, version))
        if self.fallback_error is not None:
            raise self.fallback_error
        return self._read(path, version)

    def update_refs(self, repository_id, ref_updates):
        self.ref_updates.append(ref_updates)
        results = []
        for update in ref_updates:
            branch = update["name"][len("refs/heads/"):]
            current = self.tips.get(branch, NULL_OBJECT_ID)
            if current != update["oldObjectId"]:
                results.append({"name": update["name"], "success": False, "updateStatus": "staleOldObjectId"})
                continue
            self.tips[branch] = update["newObjectId"]
            results.append(
                {
                    "name": update["name"],
                    "success": True,
                    "updateStatus": "succeeded",
                    "newObjectId": update["newObjectId"],
                }
            )
        return results

    def create_push(self, repository_id, push):
        if self.before_push is not None:
            hook, self.before_push = self.before_push, None
            hook(self)

        ref_update = push["refUpdates"][0]
        branch = ref_update["name"][len("refs/heads/"):]
        if branch not in self.tips:
            raise BranchNotFound(f"Branch {branch} not found")
        if self.tips[branch] != ref_update["oldObjectId"]:
            raise StaleBranchTip(f"refs/heads/{branch} has moved past {ref_update['oldObjectId']}")

        tree = dict(self.commits[self.tips[branch]])
        for commit in push["commits"]:
            for change in commit["changes"]:
                path = change["item"]["path"].lstrip("/")
                if change["changeType"] == "add" and path in tree:
                    raise FileAlreadyExists(f"{path} already exists")
                if change["changeType"] == "edit" and path not in tree:
                    raise FileNotFound(f"{path} not found")
                tree[path] = change["newContent"]["content"].encode("utf-8")

        commit_id = self._new_commit(tree)
        self.tips[branch] = commit_id
        self.pushes.append(push)
        return {
            "pushId": len(self.pushes),
            "commits": [{"commitId": commit_id}],
            "refUpdates": [{"name": ref_update["name"], "newObjectId": commit_id}],
        }


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def git():
    return FakeGitClient()
