"""
Review-request services.

awt can open a pull request (GitHub, via ``gh``) or a merge request (GitLab,
via ``glab``) after pushing a task branch. Which one is used depends on which
CLI is installed; when neither is, handoff carries on without one.
"""

import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Union

from loguru import logger

from .git_tool import GitOperationResult, run_command
from .utils.status_codes import AwtError, ToolMissingError

PathLike = Union[str, Path]


class ReviewRequestError(AwtError):
    """The review-request service ran but did not produce a request."""

    default_hint = "Open the review request by hand."


def extract_review_url(output: str) -> Optional[str]:
    """Return the first line of CLI output that looks like a URL."""
    for line in output.splitlines():
        line = line.strip()
        if line.startswith("http://") or line.startswith("https://"):
            return line
    return None


def strip_remote_prefix(ref: str, remote: str = "origin") -> str:
    """Turn a remote-tracking name like origin/main into main."""
    prefix = f"{remote}/"
    return ref[len(prefix):] if ref.startswith(prefix) else ref


class ReviewRequestService(ABC):
    """Opens review requests for pushed branches."""

    tool: str = ""

    def __init__(self, cwd: PathLike):
        self.cwd = Path(cwd)

    def is_available(self) -> bool:
        return shutil.which(self.tool) is not None

    @abstractmethod
    def build_command(self, title: str, body: str, target_branch: str) -> List[str]:
        """Command line that creates the request."""

    def create_review_request(self, title: str, body: str, target_branch: str) -> str:
        """Create a review request and return its URL.

        Raises:
            ToolMissingError: the CLI is not installed
            ReviewRequestError: the CLI failed or printed no URL
        """
        if not self.is_available():
            raise ToolMissingError(f"{self.tool} is not installed")
        result: GitOperationResult = run_command(self.build_command(title, body, target_branch), cwd=self.cwd)
        if not result.success:
            raise ReviewRequestError(f"{self.tool} failed: {result.error or result.output}")
        url = extract_review_url(result.output)
        if url is None:
            raise ReviewRequestError(f"{self.tool} did not report a review request URL")
        logger.info("Opened review request {}", url)
        return url


class GhReviewService(ReviewRequestService):
    tool = "gh"

    def build_command(self, title: str, body: str, target_branch: str) -> List[str]:
        return ["gh", "pr", "create", "--title", title, "--body", body, "--base", target_branch]


class GlabReviewService(ReviewRequestService):
    tool = "glab"

    def build_command(self, title: str, body: str, target_branch: str) -> List[str]:
        return [
            "glab", "mr", "create",
            "--title", title,
            "--description", body,
            "--target-branch", target_branch,
            "--yes",
        ]


REVIEW_SERVICES = (GhReviewService, GlabReviewService)


def select_review_service(cwd: PathLike) -> Optional[ReviewRequestService]:
    """Return the first installed review-request service, or None."""
    for service_cls in REVIEW_SERVICES:
        service = service_cls(cwd)
        if service.is_available():
            return service
    return None
