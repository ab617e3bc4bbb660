"""
Unit tests for the tools module.
"""

import pytest
import json
import requests
from unittest.mock import Mock, patch

from adomcp import tools
from adomcp.ado_api import AzureDevOpsAPI
from adomcp.errors import RemoteUnavailable

REPO = "feature-repo"
PATH = "Features/Configuration/Features/MyFeature.json"


def make_response(status_code, body):
    response = requests.Response()
    response.status_code = status_code
    response._content = json.dumps(body).encode("utf-8")
    response.url = "https://dev.azure.com/contoso/_apis/git/repositories/feature-repo"
    return response


def feature_file():
    return json.dumps(
        {"Id": "MyFeature", "Description": "d", "Environments": {"onebox": {}, "test": {}, "prod": {}}},
        indent=2,
    ).encode("utf-8")


@pytest.fixture
def fake_api(git):
    with patch("adomcp.tools.ado_api", git):
        yield git


class TestRepositoryTools:
    """Test repository, branch and pull request queries."""

    @patch("adomcp.tools.ado_api")
    def test_list_repos_by_project(self, mock_api):
        """Test that repositories are projected to the relevant fields."""
        mock_api.get_paginated_results.return_value = [
            {
                "id": "r1",
                "name": "FeatureManagement",
                "isDisabled": False,
                "isFork": False,
                "isInMaintenance": False,
                "webUrl": "https://dev.azure.com/contoso/p/_git/FeatureManagement",
                "size": 1024,
                "project": {"id": "p"},
                "remoteUrl": "https://contoso@dev.azure.com/contoso/p/_git/FeatureManagement",
            }
        ]

        parsed_result = json.loads(tools.list_repos_by_project("p"))

        assert parsed_result == [
            {
                "id": "r1",
                "name": "FeatureManagement",
                "isDisabled": False,
                "isFork": False,
                "isInMaintenance": False,
                "webUrl": "https://dev.azure.com/contoso/p/_git/FeatureManagement",
                "size": 1024,
            }
        ]
        url = mock_api.get_paginated_results.call_args.args[0]
        assert url == "https://dev.azure.com/contoso/p/_apis/git/repositories"

    @patch("adomcp.tools.ado_api")
    def test_list_branches_by_repo(self, mock_api):
        """Test that branch names lose their refs/heads/ prefix."""
        mock_api.get_refs.return_value = [
            {"name": "refs/heads/main"},
            {"name": "refs/heads/feature/x"},
            {"name": "refs/heads/develop"},
        ]

        parsed_result = json.loads(tools.list_branches_by_repo(REPO, top=2))

        assert parsed_result == ["main", "feature/x"]

    @patch("adomcp.tools.ado_api")
    def test_list_my_branches_by_repo(self, mock_api):
        """Test that my branches are requested from the service."""
        mock_api.get_refs.return_value = [{"name": "refs/heads/mine"}]

        assert json.loads(tools.list_my_branches_by_repo(REPO)) == ["mine"]
        assert mock_api.get_refs.call_args.kwargs["include_my_branches"] is True

    @patch("adomcp.tools.ado_api")
    def test_list_pull_requests_created_by_me(self, mock_api):
        """Test filtering pull requests by the authenticated user."""
        mock_api.get_authenticated_user_id.return_value = "user-1"
        mock_api.get_paginated_results.return_value = [
            {
                "pullRequestId": 7,
                "codeReviewId": 7,
                "status": "active",
                "createdBy": {"displayName": "Sam", "uniqueName": "sam@contoso.com", "id": "user-1"},
                "creationDate": "2024-01-01T00:00:00Z",
                "title": "Add switch",
                "isDraft": False,
                "description": "long text",
            }
        ]

        parsed_result = json.loads(tools.list_pull_requests_by_repo(REPO, created_by_me=True))

        params = mock_api.get_paginated_results.call_args.args[1]
        assert params["searchCriteria.creatorId"] == "user-1"
        assert "searchCriteria.reviewerId" not in params
        assert parsed_result[0]["createdBy"] == {"displayName": "Sam", "uniqueName": "sam@contoso.com"}
        assert "description" not in parsed_result[0]

    @patch("adomcp.tools.ado_api")
    def test_list_pull_requests_by_project_names_repository(self, mock_api):
        """Test that project-wide listings say which repository each pull request is in."""
        mock_api.get_paginated_results.return_value = [
            {"pullRequestId": 1, "repository": {"name": "FeatureManagement"}}
        ]

        parsed_result = json.loads(tools.list_pull_requests_by_project("p"))

        assert parsed_result[0]["repository"] == "FeatureManagement"
        mock_api.get_authenticated_user_id.assert_not_called()

    @patch("adomcp.tools.ado_api")
    def test_list_pull_request_threads_iterations(self, mock_api):
        """Test that iteration filters are passed through."""
        mock_api.get_paginated_results.return_value = []

        tools.list_pull_request_threads(REPO, 7, iteration=2, base_iteration=1)

        params = mock_api.get_paginated_results.call_args.args[1]
        assert params == {"$iteration": 2, "$baseIteration": 1}

    @patch("adomcp.tools.ado_api")
    def test_get_repo_by_name_or_id(self, mock_api):
        """Test finding a repository by name."""
        mock_api.get_paginated_results.return_value = [
            {"id": "r1", "name": "Other"},
            {"id": "r2", "name": "FeatureManagement"},
        ]

        assert json.loads(tools.get_repo_by_name_or_id("p", "FeatureManagement"))["id"] == "r2"

    @patch("adomcp.tools.ado_api")
    def test_get_branch_by_name_missing(self, mock_api):
        """Test that only an exact branch match is returned."""
        mock_api.get_refs.return_value = [{"name": "refs/heads/main-old"}]

        parsed_result = json.loads(tools.get_branch_by_name(REPO, "main"))

        assert parsed_result["success"] is False
        assert parsed_result["error"]["kind"] == "NotFound"
        assert parsed_result["branchName"] == "main"

    @patch("adomcp.tools.ado_api")
    def test_create_pull_request(self, mock_api):
        """Test the pull request creation body."""
        mock_response = Mock()
        mock_response.json.return_value = {"pullRequestId": 12}
        mock_api.make_request.return_value = mock_response

        result = tools.create_pull_request(REPO, "refs/heads/x", "refs/heads/main", "Title", is_draft=True)

        assert json.loads(result)["pullRequestId"] == 12
        data = mock_api.make_request.call_args.kwargs["data"]
        assert data == {
            "sourceRefName": "refs/heads/x",
            "targetRefName": "refs/heads/main",
            "title": "Title",
            "isDraft": True,
        }

    @patch("adomcp.tools.ado_api")
    def test_update_pull_request_status(self, mock_api):
        """Test that the requested status is sent."""
        mock_response = Mock()
        mock_response.json.return_value = {"status": "abandoned"}
        mock_api.make_request.return_value = mock_response

        tools.update_pull_request_status(REPO, 7, "abandoned")

        assert mock_api.make_request.call_args.args[0] == "PATCH"
        assert mock_api.make_request.call_args.kwargs["data"] == {"status": "abandoned"}

    @patch("adomcp.tools.ado_api")
    def test_update_pull_request_status_invalid(self, mock_api):
        """Test that unknown statuses are rejected locally."""
        parsed_result = json.loads(tools.update_pull_request_status(REPO, 7, "completed"))

        assert parsed_result["error"]["kind"] == "InvalidRequest"
        mock_api.make_request.assert_not_called()

    @patch("adomcp.tools.ado_api")
    def test_reply_and_resolve(self, mock_api):
        """Test comment replies and thread resolution."""
        mock_api.make_request.return_value = Mock(json=Mock(return_value={}))

        tools.reply_to_comment(REPO, 7, 3, "Done")
        assert mock_api.make_request.call_args.kwargs["data"] == {"content": "Done"}

        tools.resolve_comment(REPO, 7, 3)
        assert mock_api.make_request.call_args.kwargs["data"] == {"status": "fixed"}


class TestErrorHandling:
    """Test error handling in tools."""

    @patch("adomcp.tools.ado_api")
    def test_transport_error_handling(self, mock_api):
        """Test that transport errors become structured payloads."""
        mock_api.get_paginated_results.side_effect = requests.exceptions.ConnectionError("reset")

        parsed_result = json.loads(tools.list_repos_by_project("p"))

        assert parsed_result["success"] is False
        assert parsed_result["error"]["kind"] == "RemoteUnavailable"
        assert parsed_result["project"] == "p"

    @patch("adomcp.tools.ado_api")
    def test_domain_error_handling(self, mock_api):
        """Test that domain errors keep their kind."""
        mock_api.get_refs.side_effect = RemoteUnavailable("throttled", status_code=429)

        parsed_result = json.loads(tools.list_branches_by_repo(REPO))

        assert parsed_result["error"]["kind"] == "RemoteUnavailable"
        assert parsed_result["error"]["context"] == {"status_code": 429}


class TestBranchAndFileTools:
    """Test branch and file creation tools."""

    def test_create_branch(self, fake_api):
        """Test creating a branch from a source branch."""
        tip = fake_api.add_branch("master")

        parsed_result = json.loads(tools.create_branch(REPO, "topic", "master"))

        assert parsed_result["success"] is True
        assert parsed_result["commitId"] == tip

    def test_create_branch_missing_source(self, fake_api):
        """Test the payload for a missing source branch."""
        parsed_result = json.loads(tools.create_branch(REPO, "topic", "master"))

        assert parsed_result["error"]["type"] == "SourceBranchNotFound"
        assert parsed_result["sourceBranch"] == "master"

    def test_create_file(self, fake_api):
        """Test adding a file to a branch."""
        fake_api.add_branch("topic")

        parsed_result = json.loads(tools.create_file(REPO, "docs/a.md", "hi", "topic", "Add a"))

        assert parsed_result["success"] is True
        assert fake_api.file_at_tip("topic", "docs/a.md") == b"hi"

    def test_create_file_twice(self, fake_api):
        """Test that repeating a create reports the existing file."""
        fake_api.add_branch("topic")
        tools.create_file(REPO, "docs/a.md", "hi", "topic", "Add a")

        parsed_result = json.loads(tools.create_file(REPO, "docs/a.md", "hi", "topic", "Add a"))

        assert parsed_result["error"]["kind"] == "Conflict"
        assert parsed_result["error"]["type"] == "FileAlreadyExists"
        assert len(fake_api.pushes) == 1

    def test_create_file_missing_branch(self, fake_api):
        """Test adding a file to a branch that does not exist."""
        parsed_result = json.loads(tools.create_file(REPO, "docs/a.md", "hi", "nope", "Add a"))

        assert parsed_result["error"]["type"] == "BranchNotFound"

    def test_create_file_existing_path_from_service(self):
        """Test that the service's 409 item-exists response is reported as FileAlreadyExists."""
        api = AzureDevOpsAPI()
        api.session = Mock()
        api.session.request.side_effect = [
            make_response(200, {"value": [{"name": "refs/heads/topic", "objectId": "a" * 40}]}),
            make_response(
                409,
                {
                    "typeKey": "GitItemAlreadyExistsException",
                    "message": "TF401174: The item '/docs/a.md' already exists.",
                },
            ),
        ]

        with patch("adomcp.tools.ado_api", api):
            parsed_result = json.loads(tools.create_file(REPO, "docs/a.md", "hi", "topic", "Add a"))

        assert parsed_result["success"] is False
        assert parsed_result["error"]["type"] == "FileAlreadyExists"
        assert parsed_result["filePath"] == "docs/a.md"

    def test_create_file_push_without_commit(self):
        """Test that a push response with no commit is reported as a service failure."""
        api = Mock()
        api.resolve_branch.return_value = "a" * 40
        api.create_push.return_value = {}

        with patch("adomcp.tools.ado_api", api):
            parsed_result = json.loads(tools.create_file(REPO, "docs/a.md", "hi", "topic", "Add a"))

        assert parsed_result["success"] is False
        assert parsed_result["error"]["kind"] == "RemoteUnavailable"


class TestFeatureSwitchTools:
    """Test feature switch tools."""

    def test_create_feature_switch_default_branch(self, fake_api):
        """Test that the branch name defaults to feature/<normalized name>."""
        fake_api.add_branch("master")

        parsed_result = json.loads(tools.create_feature_switch(REPO, "MyFeature", "Does things"))

        assert parsed_result["success"] is True
        assert parsed_result["branchName"] == "feature/myfeature"
        assert parsed_result["filePath"] == PATH
        assert json.loads(parsed_result["configuration"])["Id"] == "MyFeature"
        assert "feature/myfeature" in fake_api.tips

    def test_create_feature_switch_partial_failure_then_create_file(self, fake_api):
        """Test recovering from a partial failure with create_file."""
        fake_api.add_branch("master")
        fake_api.before_push = lambda git: git.commit_directly("feature/myfeature", "other.txt", "x")

        parsed_result = json.loads(tools.create_feature_switch(REPO, "MyFeature", "Does things"))

        assert parsed_result["success"] is False
        assert parsed_result["error"]["kind"] == "PartialFailure"
        assert parsed_result["error"]["context"]["failed_step"] == "commit_file"

        content = json.dumps({"Id": "MyFeature", "Description": "Does things", "Environments": {}})
        retry = json.loads(tools.create_file(REPO, PATH, content, "feature/myfeature", "Add switch"))

        assert retry["success"] is True

    def test_update_feature_switch_toggle(self, fake_api):
        """Test enabling one stage through the tool."""
        fake_api.add_branch("feature/myfeature", {PATH: feature_file()})

        parsed_result = json.loads(
            tools.update_feature_switch(REPO, "feature/myfeature", "MyFeature", "test", enabled=True)
        )

        assert parsed_result["success"] is True
        assert parsed_result["status"] == "success"
        assert parsed_result["updatedConfig"] == {"Enabled": True}
        assert parsed_result["stage"] == "test"
        assert parsed_result["commitId"] == fake_api.tips["feature/myfeature"]

    def test_update_feature_switch_disable_discards_requirements(self, fake_api):
        """Test that disabling a gated stage replaces its Requires list."""
        gated = json.loads(feature_file())
        gated["Environments"]["prod"] = {
            "Requires": [{"Name": "PowerBI.MemberOf", "Parameters": {"Pivot": "TenantObjectId", "Values": ["t9"]}}]
        }
        fake_api.add_branch("feature/myfeature", {PATH: json.dumps(gated, indent=2).encode("utf-8")})

        parsed_result = json.loads(
            tools.update_feature_switch(
                REPO, "feature/myfeature", "MyFeature", "prod", tenant_ids=[], rollout_name=None, enabled=False
            )
        )

        assert parsed_result["updatedConfig"] == {"Enabled": False}
        stored = json.loads(fake_api.file_at_tip("feature/myfeature", PATH))
        assert stored["Environments"]["prod"] == {"Enabled": False}

    def test_update_feature_switch_tenants(self, fake_api):
        """Test gating a stage on tenants with NotMemberOf."""
        fake_api.add_branch("feature/myfeature", {PATH: feature_file()})

        parsed_result = json.loads(
            tools.update_feature_switch(
                REPO, "feature/myfeature", "MyFeature", "prod", tenant_ids=["t1"], is_member=False
            )
        )

        requires = parsed_result["updatedConfig"]["Requires"]
        assert requires[0]["Name"] == "PowerBI.NotMemberOf"
        assert parsed_result["tenantIds"] == ["t1"]

    def test_update_feature_switch_conflict(self, fake_api):
        """Test that a concurrent writer yields a conflict payload."""
        fake_api.add_branch("feature/myfeature", {PATH: feature_file()})
        fake_api.before_push = lambda git: git.commit_directly("feature/myfeature", "other.txt", "x")

        parsed_result = json.loads(
            tools.update_feature_switch(REPO, "feature/myfeature", "MyFeature", "test")
        )

        assert parsed_result["success"] is False
        assert parsed_result["status"] == "conflict"
        assert parsed_result["error"]["kind"] == "Conflict"

    def test_update_feature_switch_unknown_stage(self, fake_api):
        """Test that an unknown stage lists the available ones."""
        fake_api.add_branch("feature/myfeature", {PATH: feature_file()})

        parsed_result = json.loads(
            tools.update_feature_switch(REPO, "feature/myfeature", "MyFeature", "canary")
        )

        assert parsed_result["status"] == "error"
        assert parsed_result["error"]["context"]["available"] == ["onebox", "test", "prod"]

    def test_update_feature_switch_bulk(self, fake_api):
        """Test updating several stages in one commit."""
        fake_api.add_branch("feature/myfeature", {PATH: feature_file()})

        parsed_result = json.loads(
            tools.update_feature_switch_bulk(
                REPO,
                "feature/myfeature",
                "MyFeature",
                [{"stage": "onebox", "enabled": True}, {"stage": "test", "rolloutName": "daily"}],
            )
        )

        assert parsed_result["success"] is True
        assert set(parsed_result["updatedConfig"]) == {"onebox", "test"}
        assert len(fake_api.pushes) == 1

    def test_update_feature_switch_bulk_requires_stage_names(self, fake_api):
        """Test that every bulk entry must name its stage."""
        parsed_result = json.loads(
            tools.update_feature_switch_bulk(REPO, "feature/myfeature", "MyFeature", [{"enabled": True}])
        )

        assert parsed_result["error"]["kind"] == "InvalidRequest"
        assert parsed_result["filePath"] == PATH
        assert fake_api.fetches == []


if __name__ == "__main__":
    pytest.main([__file__])
