"""Configuration models for commit status publication."""

from pydantic import BaseModel, Field


class GitHubStatusConfig(BaseModel):
    """Configuration for publishing a GitHub commit status."""

    token: str = Field(..., description="GitHub personal access token or GITHUB_TOKEN")
    owner: str = Field(..., description="Repository owner")
    repo: str = Field(..., description="Repository name")
    sha: str = Field(..., description="Commit SHA the status is attached to")
    context: str = Field(
        default="security-scan", description="Status context shown on the commit"
    )
    target_url: str | None = Field(
        default=None, description="Link shown next to the status"
    )
    base_url: str = Field(
        default="https://api.github.com", description="GitHub API base URL"
    )
