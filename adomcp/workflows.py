"""
Branch, commit and feature-switch workflows.

All writes go through Azure DevOps pushes conditioned on the branch tip the
workflow observed. A push against a tip that has since moved is rejected by
the service and surfaced as a conflict; nothing here retries a write, since
only a fresh read can tell whether another writer's change must be kept.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple, Union

import requests

from .ado_api import NULL_OBJECT_ID, translate_error
from .document import decode, encode, feature_file_path, new_document
from .errors import (
    AdoMcpError,
    BranchAlreadyExists,
    BranchNotFound,
    FileNotFound,
    InvalidRequest,
    PartialFailure,
    RemoteUnavailable,
    SourceBranchNotFound,
    StaleBranchTip,
)
from .events import EventSink, LoggingEventSink, emit
from .stage_rules import StageRequest, compile_stage


ADD = "add"
EDIT = "edit"

STEP_CREATE_BRANCH = "create_branch"
STEP_COMMIT_FILE = "commit_file"

DONE = "done"
FAILED = "failed"
SKIPPED = "skipped"

SUCCESS = "success"
CONFLICT = "conflict"
ERROR = "error"

# updateStatus values meaning the ref name is already taken
_REF_TAKEN_STATUSES = {"staleOldObjectId", "refNameConflict", "forcePushRequired"}


class GitClient(Protocol):
    """The remote primitives the workflows depend on."""

    def resolve_branch(self, repository_id: str, branch: str) -> Optional[str]:
        ...

    def get_item_content(self, repository_id: str, path: str, version: str, version_type: str = ...) -> bytes:
        ...

    def get_item_content_via_metadata(
        self, repository_id: str, path: str, version: str, version_type: str = ...
    ) -> bytes:
        ...

    def update_refs(self, repository_id: str, ref_updates: List[Dict[str, str]]) -> List[Dict[str, Any]]:
        ...

    def create_push(self, repository_id: str, push: Dict[str, Any]) -> Dict[str, Any]:
        ...


@dataclass(frozen=True)
class CommitResult:
    commit_id: str
    new_tip: str
    push_id: Optional[int] = None


@dataclass
class StepOutcome:
    """Outcome of one step of a multi-step workflow."""

    name: str
    status: str
    detail: Optional[str] = None
    error: Optional[Dict[str, Any]] = None


@dataclass
class CreateFeatureSwitchResult:
    feature_name: str
    branch_name: str
    file_path: str
    content: str
    steps: List[StepOutcome] = field(default_factory=list)
    commit_id: Optional[str] = None
    error: Optional[AdoMcpError] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def completed_steps(self) -> List[str]:
        return [step.name for step in self.steps if step.status == DONE]

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "success": self.succeeded,
            "featureName": self.feature_name,
            "branchName": self.branch_name,
            "filePath": self.file_path,
            "commitId": self.commit_id,
            "steps": [step.__dict__ for step in self.steps],
        }
        if self.succeeded:
            payload["configuration"] = self.content
        else:
            payload["error"] = self.error.to_dict()
        return payload


@dataclass
class UpdateFeatureSwitchResult:
    status: str
    repository_id: str
    branch_name: str
    feature_name: str
    file_path: str
    stages: Dict[str, Any] = field(default_factory=dict)
    base_commit_id: Optional[str] = None
    commit_id: Optional[str] = None
    error: Optional[AdoMcpError] = None

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "success": self.succeeded,
            "status": self.status,
            "repositoryId": self.repository_id,
            "branchName": self.branch_name,
            "featureName": self.feature_name,
            "filePath": self.file_path,
            "baseCommitId": self.base_commit_id,
        }
        if self.succeeded:
            payload["commitId"] = self.commit_id
            payload["updatedConfig"] = self.stages
        else:
            payload["error"] = self.error.to_dict()
        return payload


def _sink(sink: Optional[EventSink]) -> EventSink:
    return sink if sink is not None else LoggingEventSink()


def _as_domain_error(exc: Exception, context: str) -> AdoMcpError:
    if isinstance(exc, AdoMcpError):
        return exc
    return translate_error(exc, context)


def create_branch(
    client: GitClient,
    repository_id: str,
    branch_name: str,
    source_branch: str,
    sink: Optional[EventSink] = None,
) -> str:
    """
    Create ``branch_name`` pointing at the tip of ``source_branch``.

    Returns:
        The commit id the new branch points at

    Raises:
        SourceBranchNotFound: If the source branch does not exist
        BranchAlreadyExists: If the new branch name is taken
    """
    sink = _sink(sink)
    source_commit = client.resolve_branch(repository_id, source_branch)
    if not source_commit:
        emit(sink, "branch.create_failed", branch=branch_name, reason="source branch not found")
        raise SourceBranchNotFound(
            f"Source branch '{source_branch}' not found",
            repository_id=repository_id,
            source_branch=source_branch,
        )

    ref_name = f"refs/heads/{branch_name}"
    update = {"name": ref_name, "oldObjectId": NULL_OBJECT_ID, "newObjectId": source_commit}
    try:
        results = client.update_refs(repository_id, [update])
    except StaleBranchTip as e:
        emit(sink, "branch.create_failed", branch=branch_name, reason="already exists")
        raise BranchAlreadyExists(
            f"Branch '{branch_name}' already exists", repository_id=repository_id, branch=branch_name
        ) from e

    result = results[0] if results else {}
    if not result.get("success", False):
        status = result.get("updateStatus", "unknown")
        emit(sink, "branch.create_failed", branch=branch_name, reason=status)
        if status in _REF_TAKEN_STATUSES:
            raise BranchAlreadyExists(
                f"Branch '{branch_name}' already exists",
                repository_id=repository_id,
                branch=branch_name,
                update_status=status,
            )
        if status.endswith("PermissionRequired"):
            raise RemoteUnavailable(
                f"Not permitted to create branch '{branch_name}': {status}",
                repository_id=repository_id,
                branch=branch_name,
            )
        raise InvalidRequest(
            f"Branch '{branch_name}' was not created: {status}",
            repository_id=repository_id,
            branch=branch_name,
            update_status=status,
        )

    emit(sink, "branch.created", branch=branch_name, source=source_branch, commit=source_commit)
    return result.get("newObjectId") or source_commit


def commit_file(
    client: GitClient,
    repository_id: str,
    branch_name: str,
    file_path: str,
    content: Union[bytes, str],
    change_type: str,
    message: str,
    known_tip: str,
    sink: Optional[EventSink] = None,
) -> CommitResult:
    """
    Push a single-file change as one commit on top of ``known_tip``.

    The ref update names ``known_tip`` as the expected old object id and
    leaves the new object id to the service.

    Raises:
        StaleBranchTip: If the branch moved past ``known_tip``
        FileAlreadyExists: If ``change_type`` is Add and the path exists
    """
    sink = _sink(sink)
    text = content.decode("utf-8") if isinstance(content, bytes) else content
    ref_name = f"refs/heads/{branch_name}"
    push = {
        "refUpdates": [{"name": ref_name, "oldObjectId": known_tip}],
        "commits": [
            {
                "comment": message,
                "changes": [
                    {
                        "changeType": change_type,
                        "item": {"path": f"/{file_path.lstrip('/')}"},
                        "newContent": {"content": text, "contentType": "rawtext"},
                    }
                ],
            }
        ],
    }

    try:
        result = client.create_push(repository_id, push)
    except StaleBranchTip:
        emit(sink, "commit.conflict", branch=branch_name, path=file_path, expected_tip=known_tip)
        raise
    except AdoMcpError as e:
        emit(sink, "commit.failed", branch=branch_name, path=file_path, error=e.kind)
        raise

    commits = result.get("commits") or [{}]
    commit_id = commits[0].get("commitId")
    if not commit_id:
        emit(sink, "commit.failed", branch=branch_name, path=file_path, error=RemoteUnavailable.kind)
        raise RemoteUnavailable(
            f"Push to {ref_name} returned no commit id",
            repository_id=repository_id,
            branch=branch_name,
        )
    ref_updates = result.get("refUpdates") or [{}]
    new_tip = ref_updates[0].get("newObjectId") or commit_id
    emit(sink, "commit.pushed", branch=branch_name, path=file_path, commit=commit_id, previous_tip=known_tip)
    return CommitResult(commit_id=commit_id, new_tip=new_tip, push_id=result.get("pushId"))


def create_feature_switch(
    client: GitClient,
    repository_id: str,
    feature_name: str,
    description: str,
    source_branch: str,
    branch_name: str,
    sink: Optional[EventSink] = None,
) -> CreateFeatureSwitchResult:
    """
    Create a feature branch and commit a new feature-switch file to it.

    The two remote calls are tracked as steps. A failed branch creation skips
    the commit. A failed commit after the branch exists is reported as a
    ``PartialFailure``, so the caller can retry just the file creation.
    """
    sink = _sink(sink)
    file_path = feature_file_path(feature_name)
    content = encode(new_document(feature_name, description)).decode("utf-8")
    result = CreateFeatureSwitchResult(
        feature_name=feature_name, branch_name=branch_name, file_path=file_path, content=content
    )

    try:
        tip = create_branch(client, repository_id, branch_name, source_branch, sink)
    except (AdoMcpError, requests.exceptions.RequestException) as e:
        error = _as_domain_error(e, f"Creating branch {branch_name}")
        result.steps.append(StepOutcome(STEP_CREATE_BRANCH, FAILED, error.detail, error.to_dict()))
        result.steps.append(StepOutcome(STEP_COMMIT_FILE, SKIPPED))
        result.error = error
        return result
    result.steps.append(StepOutcome(STEP_CREATE_BRANCH, DONE, f"{branch_name} at {tip}"))

    try:
        commit = commit_file(
            client,
            repository_id,
            branch_name,
            file_path,
            content,
            ADD,
            f"Add feature switch configuration for {feature_name}",
            known_tip=tip,
            sink=sink,
        )
    except (AdoMcpError, requests.exceptions.RequestException) as e:
        error = _as_domain_error(e, f"Committing {file_path}")
        result.steps.append(StepOutcome(STEP_COMMIT_FILE, FAILED, error.detail, error.to_dict()))
        result.error = PartialFailure(
            f"Branch '{branch_name}' was created but '{file_path}' was not committed: {error.detail}",
            completed=result.completed_steps,
            failed_step=STEP_COMMIT_FILE,
            cause=error,
        )
        emit(sink, "feature_switch.create_failed", feature=feature_name, failed_step=STEP_COMMIT_FILE)
        return result

    result.steps.append(StepOutcome(STEP_COMMIT_FILE, DONE, commit.commit_id))
    result.commit_id = commit.commit_id
    emit(sink, "feature_switch.created", feature=feature_name, branch=branch_name, commit=commit.commit_id)
    return result


FetchStrategy = Callable[[GitClient, str, str, str], bytes]


def _fetch_items(client: GitClient, repository_id: str, path: str, version: str) -> bytes:
    return client.get_item_content(repository_id, path, version, "commit")


def _fetch_items_metadata(client: GitClient, repository_id: str, path: str, version: str) -> bytes:
    return client.get_item_content_via_metadata(repository_id, path, version, "commit")


FETCH_STRATEGIES: Sequence[Tuple[str, FetchStrategy]] = (
    ("items", _fetch_items),
    ("items-metadata", _fetch_items_metadata),
)


def should_fall_back(exc: Exception) -> bool:
    """Whether a failed retrieval attempt may be retried on the next strategy."""
    return isinstance(exc, (FileNotFound, InvalidRequest, RemoteUnavailable))


def fetch_file(
    client: GitClient,
    repository_id: str,
    path: str,
    version: str,
    sink: Optional[EventSink] = None,
    strategies: Sequence[Tuple[str, FetchStrategy]] = FETCH_STRATEGIES,
) -> bytes:
    """
    Retrieve a file at a commit, trying each strategy in order.

    Raises:
        FileNotFound: If every strategy failed and not all on the service itself
        RemoteUnavailable: If every strategy failed on the service itself
    """
    sink = _sink(sink)
    failures: List[AdoMcpError] = []
    for name, strategy in strategies:
        try:
            content = strategy(client, repository_id, path, version)
        except AdoMcpError as e:
            if not should_fall_back(e):
                raise
            emit(sink, "fetch.failed", strategy=name, path=path, error=e.detail)
            failures.append(e)
            continue
        emit(sink, "fetch.succeeded", strategy=name, path=path, size=len(content))
        return content

    reasons = "; ".join(failure.detail for failure in failures)
    if failures and all(isinstance(failure, RemoteUnavailable) for failure in failures):
        raise RemoteUnavailable(f"Could not retrieve {path} at {version}: {reasons}", path=path)
    raise FileNotFound(f"Could not find file: {path} at commit {version}. {reasons}", path=path)


def update_feature_switch_stages(
    client: GitClient,
    repository_id: str,
    branch_name: str,
    feature_name: str,
    updates: Sequence[Tuple[str, StageRequest]],
    commit_message: Optional[str] = None,
    sink: Optional[EventSink] = None,
) -> UpdateFeatureSwitchResult:
    """
    Read, modify and write a feature-switch file in one commit.

    Resolves the branch tip, reads the file at exactly that commit, replaces
    each requested stage's configuration and pushes conditioned on the same
    tip. Every stage is validated and compiled before the document changes.

    Returns:
        A result whose ``status`` is ``success``, ``conflict`` (the branch moved;
        re-run to re-read it) or ``error``
    """
    sink = _sink(sink)
    file_path = feature_file_path(feature_name)
    result = UpdateFeatureSwitchResult(
        status=ERROR,
        repository_id=repository_id,
        branch_name=branch_name,
        feature_name=feature_name,
        file_path=file_path,
    )
    stages = [stage for stage, _ in updates]

    try:
        if not updates:
            raise InvalidRequest("No stage updates were requested")
        if len(set(stages)) != len(stages):
            raise InvalidRequest(f"Each stage may be updated once per commit: {', '.join(stages)}")

        tip = client.resolve_branch(repository_id, branch_name)
        if not tip:
            raise BranchNotFound(
                f"Could not find latest commit for branch {branch_name}",
                repository_id=repository_id,
                branch=branch_name,
            )
        result.base_commit_id = tip

        document = decode(fetch_file(client, repository_id, file_path, tip, sink))
        for stage in stages:
            document.require_stage(stage)
        compiled = {stage: compile_stage(request) for stage, request in updates}
        for stage, stage_config in compiled.items():
            document.set_stage(stage, stage_config)

        message = commit_message or f"Update feature switch {feature_name} for {', '.join(stages)} stage"
        commit = commit_file(
            client, repository_id, branch_name, file_path, encode(document), EDIT, message, tip, sink
        )
    except StaleBranchTip as e:
        result.status = CONFLICT
        result.error = e
        emit(sink, "feature_switch.update_conflict", feature=feature_name, branch=branch_name, base=result.base_commit_id)
        return result
    except (AdoMcpError, requests.exceptions.RequestException) as e:
        result.error = _as_domain_error(e, f"Updating {file_path} on {branch_name}")
        emit(sink, "feature_switch.update_failed", feature=feature_name, branch=branch_name, error=result.error.kind)
        return result

    result.status = SUCCESS
    result.commit_id = commit.commit_id
    result.stages = compiled
    emit(sink, "feature_switch.updated", feature=feature_name, stages=",".join(stages), commit=commit.commit_id)
    return result


def update_feature_switch(
    client: GitClient,
    repository_id: str,
    branch_name: str,
    feature_name: str,
    stage: str,
    request: StageRequest,
    commit_message: Optional[str] = None,
    sink: Optional[EventSink] = None,
) -> UpdateFeatureSwitchResult:
    """Update a single stage of a feature switch. See ``update_feature_switch_stages``."""
    return update_feature_switch_stages(
        client,
        repository_id,
        branch_name,
        feature_name,
        [(stage, request)],
        commit_message=commit_message,
        sink=sink,
    )
