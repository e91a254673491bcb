from pathlib import Path

import pytest

from imagematrix.config import (
    BuildRef,
    DirectStep,
    ExecFetch,
    MatrixBuild,
    MatrixConfig,
    PackageManagerStep,
    Pin,
    PinnedBuild,
    SourceTagsFetch,
    parse_config,
    read_config,
)
from imagematrix.errors import ConfigError

BASE = """\
[[base]]
name = "al"
versions = ["2023"]
package-manager = "yum"
version-tag = "al{{version}}"
image = "amazonlinux:{{version}}"
"""


def test_parse_sample_config(sample_config: MatrixConfig) -> None:
    assert sample_config.registry == "ghcr.io/acme"
    assert [base.name for base in sample_config.bases] == ["al"]
    assert sample_config.feature_order() == {"corretto": 0, "temurin": 1, "wildfly": 2}

    corretto, temurin, wildfly = sample_config.features
    assert isinstance(corretto.steps[0], PackageManagerStep)
    assert corretto.steps[0].scripts["yum"][1] == "yum install -y java-{{version}}-amazon-corretto"
    assert temurin.steps == (
        DirectStep(
            commands=("COPY temurin.sh /tmp/temurin.sh", "RUN sh /tmp/temurin.sh {{version}}"),
            dependencies=("temurin.sh",),
        ),
    )
    assert isinstance(wildfly.steps[0], PackageManagerStep)
    assert list(wildfly.steps[0].scripts) == ["yum"]

    (build,) = sample_config.builds
    assert isinstance(build, MatrixBuild)
    assert build.bases == (BuildRef("al"),)
    assert build.features == ((BuildRef("corretto"), BuildRef("temurin")), (BuildRef("wildfly"),))


def test_parse_fetch_strategies_and_version_from_alias() -> None:
    config = parse_config(
        BASE
        + """
[base.fetch-version]
type = "docker"
image = "amazonlinux:{{version}}"
command = ["sh", "-c", "cat /etc/system-release"]

[[feature]]
name = "wildfly"
versions = ["30.*"]
fetch-version = { type = "github", org = "wildfly", project = "wildfly", version-from = "branch" }
"""
    )

    assert config.bases[0].fetch == ExecFetch(
        image="amazonlinux:{{version}}",
        command=("sh", "-c", "cat /etc/system-release"),
    )
    assert config.features[0].fetch == SourceTagsFetch(org="wildfly", project="wildfly", mode="branches")


def test_pinned_build_and_version_subset_refs() -> None:
    config = parse_config(
        BASE
        + """
[[feature]]
name = "corretto"
versions = ["17", "21"]

[[build]]
base = { name = "al", version = "2023" }
features = [{ name = "corretto", version = "21" }]
image-name = "java"
image-tag = "{{corretto.version}}"

[[build]]
bases = [{ name = "al", versions = ["2023"] }]
features = [[{ name = "corretto", versions = ["17"] }]]
image-name = "java"
image-tag = "{{corretto.version}}"
"""
    )

    pinned, matrix = config.builds
    assert pinned == PinnedBuild(
        base=Pin("al", "2023"),
        features=(Pin("corretto", "21"),),
        image_name="java",
        image_tag="{{corretto.version}}",
    )
    assert isinstance(matrix, MatrixBuild)
    assert matrix.features == ((BuildRef("corretto", ("17",)),),)


@pytest.mark.parametrize(
    ("extra", "message"),
    [
        ('[[feature]]\nname = "x"\nversions = ["1"]\nfetch-version = { type = "svn" }\n', "fetch-version.type"),
        ('[[feature]]\nname = "x"\n', "versions"),
        ('[[feature]]\nname = "x"\nversions = ["1", "1"]\n', "Duplicate version placeholder"),
        (
            '[[feature]]\nname = "x"\nversions = ["1", "2"]\n[[feature]]\nname = "x"\nversions = ["2"]\n',
            "claim the same version placeholder",
        ),
        (
            '[[build]]\nbases = ["al"]\nfeatures = [["ghost"]]\nimage-name = "a"\nimage-tag = "b"\n',
            "unknown feature",
        ),
        (
            '[[feature]]\nname = "x"\nversions = ["1"]\n'
            '[[build]]\nbases = ["al"]\nfeatures = [["x"], ["x"]]\nimage-name = "a"\nimage-tag = "b"\n',
            "at most once",
        ),
        ('[[build]]\nbases = ["al"]\nimage-name = "a"\n', "image-tag"),
        (
            '[[feature]]\nname = "x"\nversions = ["1"]\n'
            '[[feature.step]]\nmethod = "docker"\ntype = "scratch"\ncommands = ["RUN true"]\n',
            "step `type`",
        ),
        (
            '[[feature]]\nname = "x"\nversions = ["1"]\n'
            '[[feature.step]]\nmethod = "docker"\ncommands = ["RUN true"]\ncopy = { "/a" = "/b" }\n',
            "Only `build` steps",
        ),
    ],
)
def test_invalid_configs_raise_config_error(extra: str, message: str) -> None:
    with pytest.raises(ConfigError) as excinfo:
        parse_config(BASE + extra)

    assert message in str(excinfo.value)
    assert excinfo.value.code == "E_CONFIG"


def test_duplicate_base_names_are_rejected() -> None:
    with pytest.raises(ConfigError):
        parse_config(BASE + BASE)


def test_read_config_reports_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError) as excinfo:
        read_config(tmp_path / "matrix.toml")

    assert excinfo.value.context["path"].endswith("matrix.toml")


def test_build_steps_carry_type_and_copy_table() -> None:
    config = parse_config(
        BASE
        + """\
[[feature]]
name = "jdk"
versions = ["21"]

[[feature.step]]
method = "rpm"
type = "build"
copy = { "/opt/jdk-{{version}}" = "/opt/jdk" }
yum = ["yum install -y tar", "curl -sL https://example.invalid/jdk-{{version}}.tgz | tar xz -C /opt"]

[[feature.step]]
method = "docker"
commands = ["ENV JAVA_HOME=/opt/jdk"]
"""
    )

    fetch, env = config.features[0].steps
    assert fetch == PackageManagerStep(
        method="rpm",
        scripts={"yum": ("yum install -y tar", "curl -sL https://example.invalid/jdk-{{version}}.tgz | tar xz -C /opt")},
        kind="build",
        copy={"/opt/jdk-{{version}}": "/opt/jdk"},
    )
    assert env == DirectStep(commands=("ENV JAVA_HOME=/opt/jdk",))
    assert env.kind == "actual"
