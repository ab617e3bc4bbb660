"""
Prompt templates offered to the agent.

Each function renders the text of one MCP prompt. The feature-switch prompts
point the agent at the repository configured in ``FEATURE_REPOSITORY_ID``.
"""

import json
from typing import List, Optional

from .config import config
from .document import KNOWN_STAGES, branch_slug, feature_file_path
from .stage_rules import MEMBER_OF, NOT_MEMBER_OF, ROLLOUT_PIVOT, TENANT_PIVOT

BULK_ACTIONS = ("enable", "disable", "tenant_rollout")


def _repository_id() -> str:
    return config.feature_repository_id or "<feature repository id>"


def _split(values: Optional[str]) -> List[str]:
    return [value.strip() for value in (values or "").split(",") if value.strip()]


def relevant_pull_requests(repository_id: str) -> str:
    """Presents the list of relevant pull requests for a given repository."""
    return f"""
# Prerequisites
1. Unless already provided, ask user for the project name
2. Unless already provided, use 'list_repos_by_project' tool to get a summarized response of the repositories in this project and ask user to select one

# Task
Find all pull requests for repository {repository_id} using 'list_pull_requests_by_repo' tool and summarize them in a table.
Include the following columns: ID, Title, Status, Created Date, Author and Reviewers."""


def create_feature_switch(
    feature_name: str, description: str, branch_name: Optional[str] = None
) -> str:
    """Creates a new feature switch by creating a branch and JSON configuration file."""
    final_branch = branch_name or branch_slug(feature_name)
    schema = json.dumps(
        {
            "Id": feature_name,
            "Description": description,
            "Environments": {stage: {} for stage in KNOWN_STAGES},
        },
        indent=2,
    )
    return f"""
# Task: Create a Feature Switch

**IMPORTANT: Use the 'create_feature_switch' tool directly. Do NOT manually create a branch first and then create a file separately.**

Create a new feature switch named "{feature_name}" using the dedicated feature switch creation tool.

## Tool to Use:
Use **ONLY** the 'create_feature_switch' tool with these parameters:
- repositoryId: "{_repository_id()}"
- featureName: "{feature_name}"
- description: "{description}"
- sourceBranch: "master"
- branchName: "{final_branch}"

## What the tool will do automatically:
1. **Create a feature branch** named "{final_branch}" from master
2. **Generate the JSON configuration file** at path: {feature_file_path(feature_name)}
3. **Include all {len(KNOWN_STAGES)} deployment environments** ({", ".join(KNOWN_STAGES)})
4. **Commit the changes** with an appropriate message

## Expected JSON (handled automatically by the tool):
```json
{schema}
```

If the result reports a partial failure (branch created, file not committed), retry with 'create_file' on the same branch instead of starting over.

After creation, provide a summary of what was created including the branch name and file path."""


def update_feature_switch(
    feature_name: str,
    stage: str,
    rollout_name: Optional[str] = None,
    tenant_ids: Optional[str] = None,
    is_member: Optional[str] = None,
    branch_name: Optional[str] = None,
) -> str:
    """Updates a feature switch stage using rollout name and/or tenant ids with MemberOf or NotMemberOf logic."""
    operator = NOT_MEMBER_OF if (is_member or "").lower() == "false" else MEMBER_OF
    rules = []
    if rollout_name:
        rules.append({"pivot": ROLLOUT_PIVOT, "values": [rollout_name], "operator": operator})
    tenants = _split(tenant_ids)
    if tenants:
        rules.append({"pivot": TENANT_PIVOT, "values": tenants, "operator": operator})

    args = {
        "repositoryId": _repository_id(),
        "branchName": branch_name or branch_slug(feature_name),
        "featureName": feature_name,
        "stage": stage,
    }
    if rollout_name:
        args["rolloutName"] = rollout_name
    if tenants:
        args["tenantIds"] = tenants
    if operator == NOT_MEMBER_OF:
        args["isMember"] = False

    return f"""
# Task: Update a Feature Switch Stage

Call the 'update_feature_switch' tool with these arguments:
```json
{json.dumps({"tool": "update_feature_switch", "args": args, "rules": rules}, indent=2)}
```

If the tool reports status "conflict", the branch changed while updating. Call the tool again; it re-reads the latest file.
After the update, show the updated stage configuration and the commit id."""


def update_feature_switch_bulk(
    feature_name: str,
    stages: str,
    action: str,
    tenant_ids: Optional[str] = None,
    rollout_name: Optional[str] = None,
    branch_name: Optional[str] = None,
) -> str:
    """Updates multiple stages of an existing feature switch in one commit."""
    if action not in BULK_ACTIONS:
        raise ValueError(f"Unknown action '{action}'. Use one of: {', '.join(BULK_ACTIONS)}")

    stage_names = _split(stages)
    tenants = _split(tenant_ids)
    final_branch = branch_name or branch_slug(feature_name)

    entries = []
    for stage in stage_names:
        entry = {"stage": stage}
        if action == "tenant_rollout":
            if tenants:
                entry["tenantIds"] = tenants
            if rollout_name:
                entry["rolloutName"] = rollout_name
        else:
            entry["enabled"] = action == "enable"
        entries.append(entry)

    if action == "enable":
        rule = '- **Enable action**: Set "Enabled": true for all specified stages'
    elif action == "disable":
        rule = '- **Disable action**: Set "Enabled": false for all specified stages'
    else:
        rule = "- **Tenant/Rollout action**: Add requirements to all specified stages"
        if rollout_name:
            rule += f'\n  - Add RolloutName requirement: "{rollout_name}"'
        if tenants:
            rule += f"\n  - Add TenantObjectId requirements: {', '.join(tenants)}"

    return f"""
# Task: Bulk Update Feature Switch for Multiple Deployment Stages

Update the feature switch "{feature_name}" for multiple deployment stages in one operation.

## Requirements:
1. **Repository**: {_repository_id()}
2. **Target branch**: {final_branch}
3. **Deployment stages**: {", ".join(stage_names)}
4. **Action**: {action}

## Configuration Rules:
{rule}

## Tool Usage:
Use the 'update_feature_switch_bulk' tool with the following parameters:
- repositoryId: "{_repository_id()}"
- branchName: "{final_branch}"
- featureName: "{feature_name}"
- stages: {json.dumps(entries)}

## Expected Result:
All {len(stage_names)} stage(s) will be updated with the {action} configuration in a single commit.

After the update, provide a summary showing:
- The number of stages updated
- The configuration applied to each stage
- The commit ID"""
