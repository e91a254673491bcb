"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from imagematrix.config import MatrixConfig, parse_config

SAMPLE_CONFIG = """\
registry = "ghcr.io/acme"

[[base]]
name = "al"
versions = ["2", "2023"]
package-manager = "yum"
version-tag = "al{{version}}"
image = "amazonlinux:{{version}}"

[[feature]]
name = "corretto"
versions = ["8", "17", "21"]
version-tag = "corretto{{version}}"

[[feature.step]]
method = "rpm"
yum = { script = ["rpm --import https://yum.corretto.aws/corretto.key", "yum install -y java-{{version}}-amazon-corretto"] }

[[feature]]
name = "temurin"
versions = ["21"]
version-tag = "temurin{{version}}"

[[feature.step]]
method = "docker"
commands = ["COPY temurin.sh /tmp/temurin.sh", "RUN sh /tmp/temurin.sh {{version}}"]
dependencies = ["temurin.sh"]

[[feature]]
name = "wildfly"
versions = ["30"]
version-tag = "wildfly{{version}}"

[[feature.step]]
method = "rpm"
yum = ["curl -sL https://example.invalid/wildfly-{{version}}.tar.gz | tar xz -C /opt"]

[[build]]
bases = ["al"]
features = [["corretto", "temurin"], ["wildfly"]]
image-name = "{{base.name}}-java"
image-tag = "{{base.version}}-{{#if corretto}}corretto{{corretto.version}}{{else}}temurin{{temurin.version}}{{/if}}-wildfly{{wildfly.version}}"
"""


@pytest.fixture
def sample_config_text() -> str:
    return SAMPLE_CONFIG


@pytest.fixture
def sample_config() -> MatrixConfig:
    return parse_config(SAMPLE_CONFIG)


@pytest.fixture
def build_context(tmp_path: Path) -> Path:
    """A build context directory holding the files the sample config depends on."""
    context = tmp_path / "context"
    context.mkdir()
    (context / "temurin.sh").write_text("#!/bin/sh\necho installing temurin $1\n", encoding="utf-8")
    return context
