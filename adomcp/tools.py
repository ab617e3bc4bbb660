"""
Tool implementations for adomcp.

This module contains the Azure DevOps repository tools exposed to the agent:
thin queries over repositories, branches, pull requests and comment threads,
plus the branch, file and feature-switch write operations. Every tool returns
a JSON text payload; failures come back as
``{"success": false, "error": {...}, <identifying parameters>}`` rather than
as raised exceptions.
"""

import json
import logging
import urllib.parse
from typing import Any, Dict, List, Optional

import requests

from . import workflows
from .ado_api import ado_api, translate_error
from .config import config
from .document import branch_slug, feature_file_path
from .errors import AdoMcpError, BranchNotFound, InvalidRequest, NotFoundError
from .stage_rules import request_from_arguments

logger = logging.getLogger(__name__)

PULL_REQUEST_STATUSES = ("active", "abandoned")


def _render(payload: Any) -> str:
    return json.dumps(payload, indent=2)


def _failure(context: str, exc: Exception, **params: Any) -> str:
    """Log a failed tool call and render the structured error payload."""
    error = exc if isinstance(exc, AdoMcpError) else translate_error(exc, context)
    logger.error(f"{context}: {error.detail}")
    return _render({"success": False, "error": error.to_dict(), **params})


def _project_url(project: str, *parts: str) -> str:
    return "/".join([config.organization_url, urllib.parse.quote(project), "_apis", "git", *parts])


def _branch_names(refs: List[Dict[str, Any]], top: Optional[int] = None) -> List[str]:
    names = [
        ref["name"][len("refs/heads/"):]
        for ref in refs
        if ref.get("name", "").startswith("refs/heads/")
    ]
    return names[:top] if top is not None else names


def _pull_request_summary(pr: Dict[str, Any], include_repository: bool = False) -> Dict[str, Any]:
    created_by = pr.get("createdBy") or {}
    summary = {
        "pullRequestId": pr.get("pullRequestId"),
        "codeReviewId": pr.get("codeReviewId"),
        "status": pr.get("status"),
        "createdBy": {
            "displayName": created_by.get("displayName"),
            "uniqueName": created_by.get("uniqueName"),
        },
        "creationDate": pr.get("creationDate"),
        "title": pr.get("title"),
        "isDraft": pr.get("isDraft"),
    }
    if include_repository:
        summary["repository"] = (pr.get("repository") or {}).get("name")
    return summary


def _search_criteria(created_by_me: bool, i_am_reviewer: bool) -> Dict[str, str]:
    criteria = {"searchCriteria.status": "active"}
    if created_by_me or i_am_reviewer:
        user_id = ado_api.get_authenticated_user_id()
        if created_by_me:
            criteria["searchCriteria.creatorId"] = user_id
        if i_am_reviewer:
            criteria["searchCriteria.reviewerId"] = user_id
    return criteria


def list_repos_by_project(project: str) -> str:
    """
    List the repositories of a project.

    Args:
        project: Project name or id

    Returns:
        JSON list of repositories with the most relevant fields
    """
    logger.info(f"Listing repositories for project: {project}")

    try:
        repositories = ado_api.get_paginated_results(_project_url(project, "repositories"))
        filtered = [
            {
                "id": repo.get("id"),
                "name": repo.get("name"),
                "isDisabled": repo.get("isDisabled"),
                "isFork": repo.get("isFork"),
                "isInMaintenance": repo.get("isInMaintenance"),
                "webUrl": repo.get("webUrl"),
                "size": repo.get("size"),
            }
            for repo in repositories
        ]
        logger.info(f"Found {len(filtered)} repositories")
        return _render(filtered)

    except (AdoMcpError, requests.exceptions.RequestException) as e:
        return _failure("Error listing repositories", e, project=project)


def list_pull_requests_by_repo(
    repository_id: str, created_by_me: bool = False, i_am_reviewer: bool = False
) -> str:
    """
    List active pull requests of a repository.

    Args:
        repository_id: Repository id
        created_by_me: Only pull requests created by the authenticated user
        i_am_reviewer: Only pull requests the authenticated user reviews

    Returns:
        JSON list of pull request summaries
    """
    logger.info(f"Listing pull requests for repository: {repository_id}")

    try:
        params = _search_criteria(created_by_me, i_am_reviewer)
        url = ado_api.repository_url(repository_id, "pullrequests")
        pull_requests = ado_api.get_paginated_results(url, params)
        return _render([_pull_request_summary(pr) for pr in pull_requests])

    except (AdoMcpError, requests.exceptions.RequestException) as e:
        return _failure("Error listing pull requests", e, repositoryId=repository_id)


def list_pull_requests_by_project(
    project: str, created_by_me: bool = False, i_am_reviewer: bool = False
) -> str:
    """
    List active pull requests across a project.

    Args:
        project: Project name or id
        created_by_me: Only pull requests created by the authenticated user
        i_am_reviewer: Only pull requests the authenticated user reviews

    Returns:
        JSON list of pull request summaries, each naming its repository
    """
    logger.info(f"Listing pull requests for project: {project}")

    try:
        params = _search_criteria(created_by_me, i_am_reviewer)
        pull_requests = ado_api.get_paginated_results(_project_url(project, "pullrequests"), params)
        return _render([_pull_request_summary(pr, include_repository=True) for pr in pull_requests])

    except (AdoMcpError, requests.exceptions.RequestException) as e:
        return _failure("Error listing pull requests", e, project=project)


def list_branches_by_repo(repository_id: str, top: int = 100) -> str:
    """
    List branch names of a repository.

    Args:
        repository_id: Repository id
        top: Maximum number of branches to return

    Returns:
        JSON list of branch names without the ``refs/heads/`` prefix
    """
    logger.info(f"Listing branches for repository: {repository_id}")

    try:
        refs = ado_api.get_refs(repository_id, filter="heads/")
        branch_names = _branch_names(refs, top)
        logger.info(f"Found {len(branch_names)} branches")
        return _render(branch_names)

    except (AdoMcpError, requests.exceptions.RequestException) as e:
        return _failure("Error listing branches", e, repositoryId=repository_id)


def list_my_branches_by_repo(repository_id: str) -> str:
    """List the branches the authenticated user created or favorited."""
    logger.info(f"Listing my branches for repository: {repository_id}")

    try:
        refs = ado_api.get_refs(repository_id, filter="heads/", include_my_branches=True)
        return _render(_branch_names(refs))

    except (AdoMcpError, requests.exceptions.RequestException) as e:
        return _failure("Error listing branches", e, repositoryId=repository_id)


def list_pull_request_threads(
    repository_id: str,
    pull_request_id: int,
    project: Optional[str] = None,
    iteration: Optional[int] = None,
    base_iteration: Optional[int] = None,
) -> str:
    """
    List the comment threads of a pull request.

    Args:
        repository_id: Repository id
        pull_request_id: Pull request id
        project: Optional project name or id
        iteration: Iteration to read threads for (latest by default)
        base_iteration: Base iteration to compare against (latest by default)

    Returns:
        JSON list of threads
    """
    logger.info(f"Listing threads for pull request {pull_request_id} in {repository_id}")

    try:
        params = {}
        if iteration is not None:
            params["$iteration"] = iteration
        if base_iteration is not None:
            params["$baseIteration"] = base_iteration
        url = ado_api.repository_url(
            repository_id, "pullRequests", str(pull_request_id), "threads", project=project
        )
        return _render(ado_api.get_paginated_results(url, params))

    except (AdoMcpError, requests.exceptions.RequestException) as e:
        return _failure(
            "Error listing pull request threads",
            e,
            repositoryId=repository_id,
            pullRequestId=pull_request_id,
        )


def list_pull_request_thread_comments(
    repository_id: str, pull_request_id: int, thread_id: int, project: Optional[str] = None
) -> str:
    """List the comments of one pull request thread."""
    logger.info(f"Listing comments of thread {thread_id} on pull request {pull_request_id}")

    try:
        url = ado_api.repository_url(
            repository_id,
            "pullRequests",
            str(pull_request_id),
            "threads",
            str(thread_id),
            "comments",
            project=project,
        )
        return _render(ado_api.get_paginated_results(url))

    except (AdoMcpError, requests.exceptions.RequestException) as e:
        return _failure(
            "Error listing thread comments",
            e,
            repositoryId=repository_id,
            pullRequestId=pull_request_id,
            threadId=thread_id,
        )


def get_repo_by_name_or_id(project: str, repository_name_or_id: str) -> str:
    """
    Get a repository of a project by name or id.

    Args:
        project: Project name or id
        repository_name_or_id: Repository name or id

    Returns:
        JSON repository object
    """
    logger.info(f"Getting repository {repository_name_or_id} in project {project}")

    try:
        repositories = ado_api.get_paginated_results(_project_url(project, "repositories"))
        for repo in repositories:
            if repository_name_or_id in (repo.get("name"), repo.get("id")):
                return _render(repo)
        raise NotFoundError(f"Repository {repository_name_or_id} not found in project {project}")

    except (AdoMcpError, requests.exceptions.RequestException) as e:
        return _failure(
            "Error getting repository", e, project=project, repositoryNameOrId=repository_name_or_id
        )


def get_branch_by_name(repository_id: str, branch_name: str) -> str:
    """Get the ref of a branch by its name."""
    logger.info(f"Getting branch {branch_name} in {repository_id}")

    try:
        refs = ado_api.get_refs(repository_id, filter=f"heads/{branch_name}")
        for ref in refs:
            if ref.get("name") == f"refs/heads/{branch_name}":
                return _render(ref)
        raise BranchNotFound(f"Branch {branch_name} not found in repository {repository_id}")

    except (AdoMcpError, requests.exceptions.RequestException) as e:
        return _failure("Error getting branch", e, repositoryId=repository_id, branchName=branch_name)


def get_pull_request_by_id(repository_id: str, pull_request_id: int) -> str:
    """Get a pull request by its id."""
    logger.info(f"Getting pull request {pull_request_id} in {repository_id}")

    try:
        url = ado_api.repository_url(repository_id, "pullrequests", str(pull_request_id))
        response = ado_api.make_request("GET", url)
        return _render(response.json())

    except (AdoMcpError, requests.exceptions.RequestException) as e:
        return _failure(
            "Error getting pull request", e, repositoryId=repository_id, pullRequestId=pull_request_id
        )


def create_pull_request(
    repository_id: str,
    source_ref_name: str,
    target_ref_name: str,
    title: str,
    description: Optional[str] = None,
    is_draft: bool = False,
) -> str:
    """
    Create a pull request.

    Args:
        repository_id: Repository id
        source_ref_name: Source ref, e.g. ``refs/heads/feature-branch``
        target_ref_name: Target ref, e.g. ``refs/heads/main``
        title: Pull request title
        description: Optional description
        is_draft: Create as a draft

    Returns:
        JSON pull request object
    """
    logger.info(f"Creating pull request in {repository_id}: {title}")

    try:
        data = {
            "sourceRefName": source_ref_name,
            "targetRefName": target_ref_name,
            "title": title,
            "isDraft": is_draft,
        }
        if description:
            data["description"] = description

        url = ado_api.repository_url(repository_id, "pullrequests")
        response = ado_api.make_request("POST", url, data=data, max_retries=0)
        pull_request = response.json()
        logger.info(f"Pull request created successfully: {pull_request.get('pullRequestId')}")
        return _render(pull_request)

    except (AdoMcpError, requests.exceptions.RequestException) as e:
        return _failure(
            "Error creating pull request",
            e,
            repositoryId=repository_id,
            sourceRefName=source_ref_name,
            targetRefName=target_ref_name,
        )


def update_pull_request_status(repository_id: str, pull_request_id: int, status: str) -> str:
    """
    Set a pull request to active or abandoned.

    Args:
        repository_id: Repository id
        pull_request_id: Pull request id
        status: ``active`` or ``abandoned``

    Returns:
        JSON pull request object
    """
    logger.info(f"Setting pull request {pull_request_id} in {repository_id} to {status}")

    try:
        if status not in PULL_REQUEST_STATUSES:
            raise InvalidRequest(
                f"Invalid status '{status}'. Use one of: {', '.join(PULL_REQUEST_STATUSES)}"
            )
        url = ado_api.repository_url(repository_id, "pullrequests", str(pull_request_id))
        response = ado_api.make_request("PATCH", url, data={"status": status}, max_retries=0)
        return _render(response.json())

    except (AdoMcpError, requests.exceptions.RequestException) as e:
        return _failure(
            "Error updating pull request",
            e,
            repositoryId=repository_id,
            pullRequestId=pull_request_id,
            status=status,
        )


def reply_to_comment(
    repository_id: str,
    pull_request_id: int,
    thread_id: int,
    content: str,
    project: Optional[str] = None,
) -> str:
    """Add a comment to a pull request thread."""
    logger.info(f"Replying to thread {thread_id} on pull request {pull_request_id}")

    try:
        url = ado_api.repository_url(
            repository_id,
            "pullRequests",
            str(pull_request_id),
            "threads",
            str(thread_id),
            "comments",
            project=project,
        )
        response = ado_api.make_request("POST", url, data={"content": content}, max_retries=0)
        return _render(response.json())

    except (AdoMcpError, requests.exceptions.RequestException) as e:
        return _failure(
            "Error replying to comment",
            e,
            repositoryId=repository_id,
            pullRequestId=pull_request_id,
            threadId=thread_id,
        )


def resolve_comment(repository_id: str, pull_request_id: int, thread_id: int) -> str:
    """Mark a pull request thread as resolved."""
    logger.info(f"Resolving thread {thread_id} on pull request {pull_request_id}")

    try:
        url = ado_api.repository_url(
            repository_id, "pullRequests", str(pull_request_id), "threads", str(thread_id)
        )
        # "fixed" is the thread status shown as Resolved
        response = ado_api.make_request("PATCH", url, data={"status": "fixed"}, max_retries=0)
        return _render(response.json())

    except (AdoMcpError, requests.exceptions.RequestException) as e:
        return _failure(
            "Error resolving comment",
            e,
            repositoryId=repository_id,
            pullRequestId=pull_request_id,
            threadId=thread_id,
        )


def create_branch(repository_id: str, branch_name: str, source_branch: str) -> str:
    """
    Create a branch from the tip of a source branch.

    Args:
        repository_id: Repository id
        branch_name: Name of the new branch
        source_branch: Branch to start from, e.g. ``main``

    Returns:
        JSON payload naming the branch and the commit it points at
    """
    logger.info(f"Creating branch {branch_name} from {source_branch} in {repository_id}")

    try:
        commit_id = workflows.create_branch(ado_api, repository_id, branch_name, source_branch)
        return _render(
            {
                "success": True,
                "message": f"Branch '{branch_name}' created successfully from '{source_branch}'",
                "repositoryId": repository_id,
                "branchName": branch_name,
                "sourceBranch": source_branch,
                "commitId": commit_id,
            }
        )

    except (AdoMcpError, requests.exceptions.RequestException) as e:
        return _failure(
            "Error creating branch",
            e,
            repositoryId=repository_id,
            branchName=branch_name,
            sourceBranch=source_branch,
        )


def create_file(
    repository_id: str, file_path: str, file_content: str, branch_name: str, commit_message: str
) -> str:
    """
    Add a new file to a branch in one commit.

    Safe to repeat after a failure: if the file already exists the call fails
    with a ``FileAlreadyExists`` conflict instead of writing it twice.

    Args:
        repository_id: Repository id
        file_path: Repository path, e.g. ``Features/Configuration/Features/MyFeature.json``
        file_content: Text content of the file
        branch_name: Branch to commit to
        commit_message: Commit message

    Returns:
        JSON payload with the new commit id
    """
    logger.info(f"Creating file {file_path} on {branch_name} in {repository_id}")

    try:
        tip = ado_api.resolve_branch(repository_id, branch_name)
        if not tip:
            raise BranchNotFound(f"Branch '{branch_name}' not found")

        commit = workflows.commit_file(
            ado_api,
            repository_id,
            branch_name,
            file_path,
            file_content,
            workflows.ADD,
            commit_message,
            known_tip=tip,
        )
        return _render(
            {
                "success": True,
                "message": f"File '{file_path}' created successfully on branch '{branch_name}'",
                "repositoryId": repository_id,
                "branchName": branch_name,
                "filePath": file_path,
                "commitId": commit.commit_id,
                "pushId": commit.push_id,
            }
        )

    except (AdoMcpError, requests.exceptions.RequestException) as e:
        return _failure(
            "Error creating file",
            e,
            repositoryId=repository_id,
            branchName=branch_name,
            filePath=file_path,
        )


def create_feature_switch(
    repository_id: str,
    feature_name: str,
    description: str,
    source_branch: str = "master",
    branch_name: Optional[str] = None,
) -> str:
    """
    Create a feature switch: a new branch plus its JSON configuration file.

    Args:
        repository_id: Repository id of the feature-management repository
        feature_name: Feature switch id, also the file name
        description: What the feature switch controls
        source_branch: Branch to start from
        branch_name: Custom branch name (default ``feature/<normalized-name>``)

    Returns:
        JSON payload with the branch, file path, configuration and per-step
        outcomes; on a partial failure the payload says which step to retry
    """
    final_branch = branch_name or branch_slug(feature_name)
    logger.info(f"Creating feature switch {feature_name} on {final_branch} in {repository_id}")

    result = workflows.create_feature_switch(
        ado_api, repository_id, feature_name, description, source_branch, final_branch
    )
    payload = {"repositoryId": repository_id, "sourceBranch": source_branch, **result.to_dict()}
    if result.succeeded:
        payload["message"] = f"Feature switch '{feature_name}' created successfully!"
    else:
        logger.error(f"Error creating feature switch {feature_name}: {result.error.detail}")
    return _render(payload)


def update_feature_switch(
    repository_id: str,
    branch_name: str,
    feature_name: str,
    stage: str,
    tenant_ids: Optional[List[str]] = None,
    rollout_name: Optional[str] = None,
    enabled: Optional[bool] = True,
    is_member: Optional[bool] = None,
    commit_message: Optional[str] = None,
) -> str:
    """
    Update one deployment stage of a feature switch.

    Tenant ids and/or a rollout name gate the stage on membership
    (``PowerBI.MemberOf``, or ``PowerBI.NotMemberOf`` with ``is_member=False``).
    Without them the stage is simply enabled or disabled.

    Args:
        repository_id: Repository id
        branch_name: Branch holding the feature switch
        feature_name: Feature switch id
        stage: Deployment stage, e.g. ``test`` or ``prod``
        tenant_ids: Tenant object ids to require
        rollout_name: Rollout name to require, e.g. ``daily``
        enabled: Used only when no membership is requested
        is_member: False for NotMemberOf requirements
        commit_message: Optional commit message

    Returns:
        JSON payload with ``status`` ``success``, ``conflict`` (branch moved,
        call again) or ``error``
    """
    logger.info(f"Updating feature switch {feature_name} stage {stage} on {branch_name}")

    request = request_from_arguments(tenant_ids, rollout_name, enabled, is_member)
    result = workflows.update_feature_switch(
        ado_api, repository_id, branch_name, feature_name, stage, request, commit_message
    )
    payload = result.to_dict()
    payload.update({"stage": stage, "tenantIds": tenant_ids, "rolloutName": rollout_name})
    if result.succeeded:
        payload["message"] = f"Successfully updated feature switch {feature_name} for {stage} stage"
        payload["updatedConfig"] = result.stages[stage]
    else:
        logger.error(f"Error updating feature switch {feature_name}: {result.error.detail}")
    return _render(payload)


def update_feature_switch_bulk(
    repository_id: str,
    branch_name: str,
    feature_name: str,
    stages: List[Dict[str, Any]],
    commit_message: Optional[str] = None,
) -> str:
    """
    Update several stages of a feature switch in a single commit.

    Args:
        repository_id: Repository id
        branch_name: Branch holding the feature switch
        feature_name: Feature switch id
        stages: One entry per stage: ``{"stage": ..., "enabled": ...}`` or
            ``{"stage": ..., "tenantIds": [...], "rolloutName": ..., "isMember": ...}``
        commit_message: Optional commit message

    Returns:
        JSON payload as for ``update_feature_switch``, with every updated stage
    """
    logger.info(f"Bulk updating feature switch {feature_name} on {branch_name}")

    params = {
        "repositoryId": repository_id,
        "branchName": branch_name,
        "featureName": feature_name,
        "filePath": feature_file_path(feature_name),
    }
    try:
        updates = []
        for entry in stages:
            if not isinstance(entry, dict) or not entry.get("stage"):
                raise InvalidRequest(f"Every stage entry needs a 'stage' name: {entry!r}")
            request = request_from_arguments(
                entry.get("tenantIds"),
                entry.get("rolloutName"),
                entry.get("enabled", True),
                entry.get("isMember"),
            )
            updates.append((entry["stage"], request))
    except InvalidRequest as e:
        return _failure("Error updating feature switch", e, **params)

    result = workflows.update_feature_switch_stages(
        ado_api, repository_id, branch_name, feature_name, updates, commit_message
    )
    payload = result.to_dict()
    if result.succeeded:
        payload["message"] = (
            f"Successfully updated feature switch {feature_name} for {len(updates)} stage(s)"
        )
    else:
        logger.error(f"Error updating feature switch {feature_name}: {result.error.detail}")
    return _render(payload)
