"""Compiler interfaces for emitting build scripts from a lock."""

from .dockerfile import DOCKERFILE_NAME, DockerfileEmission, generate_dockerfile, write_dockerfile

__all__ = ["DOCKERFILE_NAME", "DockerfileEmission", "generate_dockerfile", "write_dockerfile"]
