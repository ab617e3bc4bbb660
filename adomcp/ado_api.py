"""
Azure DevOps REST API client for adomcp.

This module provides a centralized interface for the Azure DevOps Git REST
API: session management, throttling retries, continuation-token pagination,
and the four primitives the feature-switch workflows rely on (ref resolution,
item content retrieval, ref updates and pushes).
"""

import logging
import time
import urllib.parse
from typing import Any, Dict, List, Optional, Tuple, Type

import requests

from .config import config
from .errors import (
    AdoMcpError,
    BranchNotFound,
    FileAlreadyExists,
    FileNotFound,
    InvalidRequest,
    NotFoundError,
    RemoteUnavailable,
    StaleBranchTip,
)

logger = logging.getLogger(__name__)

# Standard Git null object id, marks "ref does not exist yet" in a ref update
NULL_OBJECT_ID = "0" * 40

CONTINUATION_HEADER = "x-ms-continuationtoken"

_STALE_TYPE_KEYS = {"GitReferenceStaleException", "GitRefUpdateRejectedException"}
_ITEM_EXISTS_TYPE_KEYS = {"GitItemAlreadyExistsException", "GitPathAlreadyExistsException"}
_ITEM_MISSING_TYPE_KEYS = {"GitItemNotFoundException", "GitUnresolvableToCommitException"}
_REF_MISSING_TYPE_KEYS = {"GitRefNotFoundException", "GitReferenceNotFoundException"}


def error_details(response: requests.Response) -> Tuple[str, str]:
    """
    Extract ``(typeKey, message)`` from an Azure DevOps error response.

    Azure DevOps reports failures as JSON bodies such as
    ``{"typeKey": "GitReferenceStaleException", "message": "TF401028: ..."}``.
    """
    try:
        body = response.json()
    except ValueError:
        return "", (response.text or "")[:500]
    if isinstance(body, dict):
        return body.get("typeKey") or "", body.get("message") or (response.text or "")[:500]
    return "", (response.text or "")[:500]


def translate_error(
    exc: requests.exceptions.RequestException,
    context: str,
    not_found: Type[AdoMcpError] = NotFoundError,
) -> AdoMcpError:
    """
    Map a ``requests`` failure onto the project's error taxonomy.

    Args:
        exc: The exception raised by ``make_request``
        context: Short description of the call, used in the detail text
        not_found: Error class used for 404 responses

    Returns:
        The domain error to raise
    """
    response = getattr(exc, "response", None)
    if response is None:
        return RemoteUnavailable(f"{context}: {exc}")

    status = response.status_code
    type_key, message = error_details(response)
    detail = f"{context}: HTTP {status} {message}".strip()

    # typeKey wins over the status code
    if type_key in _STALE_TYPE_KEYS:
        return StaleBranchTip(detail, type_key=type_key)
    if type_key in _ITEM_EXISTS_TYPE_KEYS:
        return FileAlreadyExists(detail, type_key=type_key)
    if type_key in _ITEM_MISSING_TYPE_KEYS:
        return FileNotFound(detail, type_key=type_key)
    if type_key in _REF_MISSING_TYPE_KEYS:
        return BranchNotFound(detail, type_key=type_key)
    if "already exists" in message.lower():
        return FileAlreadyExists(detail, type_key=type_key)
    if status == 409:
        return StaleBranchTip(detail, type_key=type_key)
    if status == 404:
        return not_found(detail, type_key=type_key)
    if status in (400, 422):
        return InvalidRequest(detail, type_key=type_key)
    return RemoteUnavailable(detail, status_code=status)


class AzureDevOpsAPI:
    """Azure DevOps API wrapper with session management and utility functions."""

    def __init__(self):
        """Initialize the API client with a session."""
        self.session = requests.Session()
        logger.info("Azure DevOps API client initialized")

    def repository_url(self, repository_id: str, *parts: str, project: Optional[str] = None) -> str:
        """
        Build a Git repository URL.

        Args:
            repository_id: Repository id (or name, when ``project`` is given)
            parts: Extra path segments, e.g. ``"pullrequests", "12"``
            project: Optional project name or id

        Returns:
            Absolute URL under the configured organization
        """
        url = config.organization_url
        if project:
            url += f"/{urllib.parse.quote(project)}"
        url += f"/_apis/git/repositories/{urllib.parse.quote(repository_id)}"
        for part in parts:
            url += f"/{part}"
        return url

    def make_request(
        self,
        method: str,
        url: str,
        data: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
        max_retries: int = 3,
        headers: Optional[Dict[str, str]] = None,
        api_version: Optional[str] = None,
    ) -> requests.Response:
        """
        Make an HTTP request to Azure DevOps with throttling retries.

        Args:
            method: HTTP method (GET, POST, PATCH, etc.)
            url: Full URL for the request
            data: JSON body for POST/PATCH requests
            params: Query parameters
            max_retries: Maximum number of retries on HTTP 429
            headers: Extra headers merged over the auth headers
            api_version: api-version query value, ``""`` to omit it

        Returns:
            Response object

        Raises:
            requests.exceptions.RequestException: For HTTP and transport errors
        """
        query = dict(params or {})
        version = config.api_version if api_version is None else api_version
        if version:
            query.setdefault("api-version", version)

        request_headers = config.get_ado_headers()
        if headers:
            request_headers.update(headers)

        for attempt in range(max_retries + 1):
            try:
                response = self.session.request(
                    method=method,
                    url=url,
                    json=data,
                    params=query,
                    headers=request_headers,
                    timeout=config.api_timeout,
                )
            except requests.exceptions.RequestException as e:
                logger.error(f"Azure DevOps request failed: {method} {url} - {str(e)}")
                raise

            if "X-RateLimit-Remaining" in response.headers:
                logger.debug(f"Azure DevOps rate limit remaining: {response.headers['X-RateLimit-Remaining']}")

            if response.status_code == 429:
                if attempt < max_retries:
                    delay = max(1, int(response.headers.get("Retry-After", "1")))
                    logger.warning(
                        f"Request throttled. Retrying in {delay} seconds... (attempt {attempt + 1}/{max_retries})"
                    )
                    time.sleep(delay)
                    continue
                logger.error("Request throttled and max retries reached")

            try:
                response.raise_for_status()
            except requests.exceptions.HTTPError as e:
                logger.error(f"Azure DevOps request failed: {method} {url} - {str(e)}")
                raise
            return response

    def get_paginated_results(
        self, url: str, params: Optional[Dict[str, Any]] = None, max_pages: int = 100
    ) -> list:
        """
        Get all results from an endpoint paged with continuation tokens.

        Args:
            url: Base URL for the API endpoint
            params: Query parameters
            max_pages: Maximum number of pages to fetch

        Returns:
            List of all items from all pages
        """
        all_items = []
        query = dict(params or {})
        page = 0

        while page < max_pages:
            response = self.make_request("GET", url, params=query)
            body = response.json()
            items = body.get("value", []) if isinstance(body, dict) else body
            all_items.extend(items)
            page += 1

            token = response.headers.get(CONTINUATION_HEADER)
            if not token:
                break
            query["continuationToken"] = token

        logger.debug(f"Retrieved {len(all_items)} items from {page} pages")
        return all_items

    def get_refs(
        self, repository_id: str, filter: Optional[str] = None, include_my_branches: bool = False
    ) -> List[Dict[str, Any]]:
        """List refs of a repository, optionally filtered by a name prefix such as ``heads/``."""
        params: Dict[str, Any] = {}
        if filter:
            params["filter"] = filter
        if include_my_branches:
            params["includeMyBranches"] = "true"
        return self.get_paginated_results(self.repository_url(repository_id, "refs"), params)

    def resolve_branch(self, repository_id: str, branch: str) -> Optional[str]:
        """
        Resolve a branch name to its current commit id.

        The service's ``filter`` is a prefix match, so the exact
        ``refs/heads/<branch>`` entry is selected from the results.

        Returns:
            The commit id, or None when the branch does not exist
        """
        ref_name = f"refs/heads/{branch}"
        try:
            refs = self.get_refs(repository_id, filter=f"heads/{branch}")
        except requests.exceptions.RequestException as e:
            raise translate_error(e, f"Resolving {ref_name} in {repository_id}") from e

        for ref in refs:
            if ref.get("name") == ref_name:
                return ref.get("objectId")
        return None

    def get_item_content(self, repository_id: str, path: str, version: str, version_type: str = "commit") -> bytes:
        """
        Download the raw bytes of a file at a version (primary retrieval path).

        Raises:
            FileNotFound: If the item does not exist or no content came back
            RemoteUnavailable: For transport, auth and server failures
        """
        url = self.repository_url(repository_id, "items")
        params = {
            "path": f"/{path.lstrip('/')}",
            "versionDescriptor.version": version,
            "versionDescriptor.versionType": version_type,
            "download": "false",
            "$format": "octetStream",
        }
        context = f"Downloading {path} at {version_type} {version}"
        try:
            response = self.make_request(
                "GET", url, params=params, headers={"Accept": "application/octet-stream"}
            )
        except requests.exceptions.RequestException as e:
            raise translate_error(e, context, not_found=FileNotFound) from e

        if not response.content:
            raise FileNotFound(f"{context}: no content returned")
        return response.content

    def get_item_content_via_metadata(
        self, repository_id: str, path: str, version: str, version_type: str = "commit"
    ) -> bytes:
        """
        Fetch file content through the JSON items API (fallback retrieval path).

        Raises:
            FileNotFound: If the item does not exist or carries no content
            RemoteUnavailable: For transport, auth and server failures
        """
        url = self.repository_url(repository_id, "items")
        params = {
            "path": f"/{path.lstrip('/')}",
            "versionType": version_type,
            "version": version,
            "includeContent": "true",
        }
        context = f"Fetching {path} metadata at {version_type} {version}"
        try:
            response = self.make_request("GET", url, params=params, api_version=config.items_api_version)
            data = response.json()
        except requests.exceptions.RequestException as e:
            raise translate_error(e, context, not_found=FileNotFound) from e
        except ValueError as e:
            raise RemoteUnavailable(f"{context}: response was not JSON") from e

        content = data.get("content") if isinstance(data, dict) else None
        if not content:
            raise FileNotFound(f"{context}: item has no content")
        return content.encode("utf-8")

    def update_refs(self, repository_id: str, ref_updates: List[Dict[str, str]]) -> List[Dict[str, Any]]:
        """
        Submit ref updates (create, move or delete refs) without file changes.

        Returns:
            One result per update, each with ``name``, ``success`` and ``updateStatus``

        Raises:
            StaleBranchTip: If the service rejected the request outright with a conflict
        """
        url = self.repository_url(repository_id, "refs")
        try:
            response = self.make_request("POST", url, data=ref_updates, max_retries=0)
        except requests.exceptions.RequestException as e:
            names = ", ".join(update["name"] for update in ref_updates)
            raise translate_error(e, f"Updating refs {names}") from e
        return response.json().get("value", [])

    def create_push(self, repository_id: str, push: Dict[str, Any]) -> Dict[str, Any]:
        """
        Submit an atomic push.

        The service applies the push only if every ``oldObjectId`` still
        matches the ref's tip; otherwise nothing is written.

        Raises:
            StaleBranchTip: If a ref moved since its ``oldObjectId`` was read
            FileAlreadyExists: If an Add targets an existing path
            FileNotFound: If an Edit targets a missing path
        """
        url = self.repository_url(repository_id, "pushes")
        names = ", ".join(update["name"] for update in push.get("refUpdates", []))
        try:
            response = self.make_request("POST", url, data=push, max_retries=0)
        except requests.exceptions.RequestException as e:
            raise translate_error(e, f"Pushing to {names}", not_found=BranchNotFound) from e
        return response.json()

    def get_authenticated_user_id(self) -> str:
        """Return the id of the user the configured credentials belong to."""
        url = f"{config.organization_url}/_apis/connectionData"
        response = self.make_request("GET", url, api_version="")
        return response.json()["authenticatedUser"]["id"]

    def close(self):
        """Close the session."""
        self.session.close()
        logger.info("Azure DevOps API session closed")


# Global Azure DevOps API instance
ado_api = AzureDevOpsAPI()
