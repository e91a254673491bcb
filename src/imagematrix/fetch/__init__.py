"""External version sources: docker exec and GitHub refs."""

from .docker import DockerClient, last_line, split_image
from .github import GithubClient, token_from_env

__all__ = ["DockerClient", "GithubClient", "last_line", "split_image", "token_from_env"]
