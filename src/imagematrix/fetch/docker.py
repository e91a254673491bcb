"""Docker CLI collaborator: exec version fetch and registry digest lookup."""

from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass, field

from imagematrix.errors import VersionError, VersionErrorKind


@dataclass(slots=True)
class DockerClient:
    """Runs ``docker`` to completion and returns its stdout.

    Each version command runs in a fresh, auto-removed container. Timeouts
    surface as retryable network failures.
    """

    executable: str = "docker"
    timeout: float = 600.0
    run_args: list[str] = field(default_factory=lambda: ["--pull", "missing"])

    def run_command(self, image: str, command: tuple[str, ...]) -> str:
        argv = [self.executable, "run", "--rm", *self.run_args, image, *command]
        return self._run(argv, operation="exec_version", subject=image)

    def digest(self, image: str) -> str:
        """Return the registry content digest (``sha256:...``) for *image*."""
        argv = [
            self.executable,
            "buildx",
            "imagetools",
            "inspect",
            image,
            "--format",
            "{{json .Manifest}}",
        ]
        output = self._run(argv, operation="digest", subject=image)
        try:
            manifest = json.loads(output)
        except json.JSONDecodeError as exc:
            raise VersionError(
                "Image manifest is not valid JSON.",
                kind=VersionErrorKind.AMBIGUOUS_OUTPUT,
                context={"operation": "digest", "image": image},
            ) from exc
        digest = manifest.get("digest") if isinstance(manifest, dict) else None
        if not isinstance(digest, str) or not digest:
            raise VersionError(
                "Image has no digest.",
                kind=VersionErrorKind.NOT_FOUND,
                context={"operation": "digest", "image": image},
            )
        return digest

    def _run(self, argv: list[str], *, operation: str, subject: str) -> str:
        try:
            completed = subprocess.run(
                argv,
                check=False,
                text=True,
                capture_output=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise VersionError(
                "Docker command timed out.",
                kind=VersionErrorKind.NETWORK_FAILURE,
                context={"operation": operation, "image": subject, "timeout": str(self.timeout)},
            ) from exc
        except FileNotFoundError as exc:
            raise VersionError(
                f"`{self.executable}` is not available in PATH.",
                kind=VersionErrorKind.NOT_FOUND,
                context={"operation": operation, "image": subject},
            ) from exc
        if completed.returncode != 0:
            raise VersionError(
                "Docker command failed.",
                kind=VersionErrorKind.NOT_FOUND,
                hint="Check that the image exists and the command runs inside it.",
                context={
                    "operation": operation,
                    "image": subject,
                    "argv": " ".join(argv),
                    "returncode": str(completed.returncode),
                    "stderr": completed.stderr.strip()[:2000] if completed.stderr else "",
                },
            )
        return completed.stdout


def last_line(output: str) -> str | None:
    """Return the last non-empty line of *output*, stripped."""
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    return lines[-1] if lines else None


def split_image(image: str) -> tuple[str, str | None]:
    """Split ``repo[:tag][@digest]`` into repository and tag.

    A colon only starts a tag when it appears after the last ``/``, so
    registry ports (``localhost:5000/app``) stay in the repository.
    """
    repository = image.split("@", 1)[0]
    slash = repository.rfind("/")
    colon = repository.rfind(":")
    if colon > slash:
        return repository[:colon], repository[colon + 1 :]
    return repository, None
