"""
MCP server registration.

Exposes the functions of ``tools`` and ``prompts`` over the Model Context
Protocol with the camelCase argument names Azure DevOps agents expect.
"""

from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from . import prompts, tools

mcp = FastMCP("adomcp")


@mcp.tool()
def list_repos_by_project(project: str) -> str:
    """Retrieve a list of repositories for a given project."""
    return tools.list_repos_by_project(project)


@mcp.tool()
def list_pull_requests_by_repo(
    repositoryId: str, created_by_me: bool = False, i_am_reviewer: bool = False
) -> str:
    """Retrieve a list of active pull requests for a given repository."""
    return tools.list_pull_requests_by_repo(repositoryId, created_by_me, i_am_reviewer)


@mcp.tool()
def list_pull_requests_by_project(
    project: str, created_by_me: bool = False, i_am_reviewer: bool = False
) -> str:
    """Retrieve a list of active pull requests across all repositories in a project."""
    return tools.list_pull_requests_by_project(project, created_by_me, i_am_reviewer)


@mcp.tool()
def list_branches_by_repo(repositoryId: str, top: int = 100) -> str:
    """Retrieve a list of branch names for a given repository."""
    return tools.list_branches_by_repo(repositoryId, top)


@mcp.tool()
def list_my_branches_by_repo(repositoryId: str) -> str:
    """Retrieve the branches created or favorited by the current user."""
    return tools.list_my_branches_by_repo(repositoryId)


@mcp.tool()
def list_pull_request_threads(
    repositoryId: str,
    pullRequestId: int,
    project: Optional[str] = None,
    iteration: Optional[int] = None,
    baseIteration: Optional[int] = None,
) -> str:
    """Retrieve the comment threads of a pull request."""
    return tools.list_pull_request_threads(repositoryId, pullRequestId, project, iteration, baseIteration)


@mcp.tool()
def list_pull_request_thread_comments(
    repositoryId: str, pullRequestId: int, threadId: int, project: Optional[str] = None
) -> str:
    """Retrieve the comments of a pull request thread."""
    return tools.list_pull_request_thread_comments(repositoryId, pullRequestId, threadId, project)


@mcp.tool()
def get_repo_by_name_or_id(project: str, repositoryNameOrId: str) -> str:
    """Get a repository of a project by name or id."""
    return tools.get_repo_by_name_or_id(project, repositoryNameOrId)


@mcp.tool()
def get_branch_by_name(repositoryId: str, branchName: str) -> str:
    """Get a branch by its name."""
    return tools.get_branch_by_name(repositoryId, branchName)


@mcp.tool()
def get_pull_request_by_id(repositoryId: str, pullRequestId: int) -> str:
    """Get a pull request by its id."""
    return tools.get_pull_request_by_id(repositoryId, pullRequestId)


@mcp.tool()
def create_pull_request(
    repositoryId: str,
    sourceRefName: str,
    targetRefName: str,
    title: str,
    description: Optional[str] = None,
    isDraft: bool = False,
) -> str:
    """Create a pull request, e.g. from refs/heads/feature-branch into refs/heads/main."""
    return tools.create_pull_request(
        repositoryId, sourceRefName, targetRefName, title, description, isDraft
    )


@mcp.tool()
def update_pull_request_status(repositoryId: str, pullRequestId: int, status: str) -> str:
    """Set a pull request to 'active' or 'abandoned'."""
    return tools.update_pull_request_status(repositoryId, pullRequestId, status)


@mcp.tool()
def reply_to_comment(
    repositoryId: str, pullRequestId: int, threadId: int, content: str, project: Optional[str] = None
) -> str:
    """Reply to a comment thread of a pull request."""
    return tools.reply_to_comment(repositoryId, pullRequestId, threadId, content, project)


@mcp.tool()
def resolve_comment(repositoryId: str, pullRequestId: int, threadId: int) -> str:
    """Resolve a comment thread of a pull request."""
    return tools.resolve_comment(repositoryId, pullRequestId, threadId)


@mcp.tool()
def create_branch(repositoryId: str, branchName: str, sourceBranch: str) -> str:
    """Create a new branch from the tip of a source branch."""
    return tools.create_branch(repositoryId, branchName, sourceBranch)


@mcp.tool()
def create_file(
    repositoryId: str, filePath: str, fileContent: str, branchName: str, commitMessage: str
) -> str:
    """Create a new file on a branch in a single commit."""
    return tools.create_file(repositoryId, filePath, fileContent, branchName, commitMessage)


@mcp.tool()
def create_feature_switch(
    repositoryId: str,
    featureName: str,
    description: str,
    sourceBranch: str = "master",
    branchName: Optional[str] = None,
) -> str:
    """Create a feature switch: a new branch plus its JSON configuration file with every deployment stage."""
    return tools.create_feature_switch(repositoryId, featureName, description, sourceBranch, branchName)


@mcp.tool()
def update_feature_switch(
    repositoryId: str,
    branchName: str,
    featureName: str,
    stage: str,
    tenantIds: Optional[List[str]] = None,
    rolloutName: Optional[str] = None,
    enabled: bool = True,
    isMember: bool = True,
    commitMessage: Optional[str] = None,
) -> str:
    """
    Update one deployment stage of a feature switch.

    With tenantIds and/or rolloutName the stage requires membership
    (isMember=false for NotMemberOf); otherwise it is set to Enabled true/false.
    A "conflict" status means the branch moved; call again to re-read it.
    """
    return tools.update_feature_switch(
        repositoryId,
        branchName,
        featureName,
        stage,
        tenant_ids=tenantIds,
        rollout_name=rolloutName,
        enabled=enabled,
        is_member=isMember,
        commit_message=commitMessage,
    )


@mcp.tool()
def update_feature_switch_bulk(
    repositoryId: str,
    branchName: str,
    featureName: str,
    stages: List[Dict[str, Any]],
    commitMessage: Optional[str] = None,
) -> str:
    """
    Update several stages of a feature switch in one commit.

    Each entry of stages is {"stage": ..., "enabled": ...} or
    {"stage": ..., "tenantIds": [...], "rolloutName": ..., "isMember": ...}.
    """
    return tools.update_feature_switch_bulk(repositoryId, branchName, featureName, stages, commitMessage)


@mcp.prompt()
def relevant_pull_requests(repositoryId: str) -> str:
    """Presents the list of relevant pull requests for a given repository."""
    return prompts.relevant_pull_requests(repositoryId)


@mcp.prompt(name="create_feature_switch")
def create_feature_switch_prompt(
    featureName: str, description: str, branchName: Optional[str] = None
) -> str:
    """Creates a new feature switch by creating a branch and JSON configuration file."""
    return prompts.create_feature_switch(featureName, description, branchName)


@mcp.prompt(name="update_feature_switch")
def update_feature_switch_prompt(
    featureName: str,
    stage: str,
    rolloutName: Optional[str] = None,
    tenantIds: Optional[str] = None,
    isMember: Optional[str] = None,
    branchName: Optional[str] = None,
) -> str:
    """Updates a feature switch stage using rollout name and/or tenant ids."""
    return prompts.update_feature_switch(featureName, stage, rolloutName, tenantIds, isMember, branchName)


@mcp.prompt(name="update_feature_switch_bulk")
def update_feature_switch_bulk_prompt(
    featureName: str,
    stages: str,
    action: str,
    tenantIds: Optional[str] = None,
    rolloutName: Optional[str] = None,
    branchName: Optional[str] = None,
) -> str:
    """Updates multiple stages of a feature switch: enable, disable or tenant_rollout."""
    return prompts.update_feature_switch_bulk(featureName, stages, action, tenantIds, rolloutName, branchName)
