import threading
import time

import pytest

from imagematrix.config import DirectStep, MatrixConfig, PackageManagerStep, parse_config
from imagematrix.errors import ConfigError, VersionError, VersionErrorKind
from imagematrix.lockfile import ImageIdentifier, VersionRef
from imagematrix.lockfile.builder import LockBuilder
from imagematrix.observability import StructuredLogger
from imagematrix.resolve import RetryPolicy, VersionResolver

DATE = "24-05-06"

EXEC_CONFIG = """\
[[base]]
name = "al"
versions = ["2023", "latest"]
package-manager = "yum"
version-tag = "al{{versions.0}}.{{versions.1}}"
image = "amazonlinux:{{versions.0}}"
fetch-version = { type = "docker", image = "amazonlinux:{{version}}", command = ["cat", "/etc/system-release"] }

[[feature]]
name = "jq"
versions = ["1.7"]

[[build]]
bases = ["al"]
features = [["jq"]]
image-name = "tools"
image-tag = "{{base.version}}-{{date}}"
"""


class FakeRunner:
    def __init__(self, output: str | VersionError):
        self.output = output
        self.images: list[str] = []

    def run_command(self, image: str, command: tuple[str, ...]) -> str:
        self.images.append(image)
        if isinstance(self.output, VersionError):
            raise self.output
        return self.output


class FakeInspector:
    def __init__(self, error: VersionError | None = None):
        self.error = error

    def digest(self, image: str) -> str:
        if self.error is not None:
            raise self.error
        return "sha256:" + image.replace(":", "-")


def test_literal_versions_round_trip_into_the_lock(sample_config: MatrixConfig) -> None:
    lock = LockBuilder(VersionResolver(), date=DATE).build(sample_config)

    assert lock.registry == "ghcr.io/acme"
    assert [(base.version, base.tag, base.image) for base in lock.bases] == [
        ("2", "al2", "amazonlinux:2"),
        ("2023", "al2023", "amazonlinux:2023"),
    ]
    assert [str(feature.ref) for feature in lock.features] == [
        "corretto-8",
        "corretto-17",
        "corretto-21",
        "temurin-21",
        "wildfly-30",
    ]

    corretto = lock.feature(VersionRef("corretto", "21"))
    assert isinstance(corretto.steps[0], PackageManagerStep)
    assert corretto.steps[0].scripts["yum"][1] == "yum install -y java-21-amazon-corretto"
    temurin = lock.feature(VersionRef("temurin", "21"))
    assert temurin.steps[0] == DirectStep(
        commands=("COPY temurin.sh /tmp/temurin.sh", "RUN sh /tmp/temurin.sh 21"),
        dependencies=("temurin.sh",),
    )

    assert len(lock.builds) == 8
    assert lock.builds[0].image_name == "al-java"
    assert lock.builds[0].image_tag == "2-corretto8-wildfly30"
    assert lock.builds[3].image_tag == "2-temurin21-wildfly30"


def test_exec_versions_and_digests_are_captured() -> None:
    runner = FakeRunner("Amazon Linux release\n2023.4.20240416\n")
    lock = LockBuilder(
        VersionResolver(runner=runner),
        inspector=FakeInspector(),
        date=DATE,
    ).build(parse_config(EXEC_CONFIG))

    # Both placeholders resolve to the same version and collapse into one entry.
    (base,) = lock.bases
    assert base.version == "2023.4.20240416"
    assert base.tag == "al2023.4"
    assert base.identifier == ImageIdentifier("Digest", "sha256:amazonlinux-2023")
    assert sorted(runner.images) == ["amazonlinux:2023", "amazonlinux:latest"]

    (build,) = lock.builds
    assert build.target == "al2023.4"
    assert build.image_tag == "2023.4.20240416-24-05-06"


def test_failed_digest_inspection_falls_back_to_tag() -> None:
    logger = StructuredLogger(level="debug")
    lock = LockBuilder(
        VersionResolver(runner=FakeRunner("2023.4.20240416")),
        inspector=FakeInspector(VersionError("no buildx", kind=VersionErrorKind.NOT_FOUND)),
        logger=logger,
        date=DATE,
    ).build(parse_config(EXEC_CONFIG))

    assert lock.bases[0].identifier == ImageIdentifier("Tag", "2023")
    assert [record["level"] for record in logger.records_for("amazonlinux:2023")] == ["warning"]


def test_first_resolution_error_aborts_with_attribution() -> None:
    runner = FakeRunner(VersionError("image not found", kind=VersionErrorKind.NOT_FOUND))

    with pytest.raises(VersionError) as excinfo:
        LockBuilder(VersionResolver(runner=runner), max_workers=2, date=DATE).build(parse_config(EXEC_CONFIG))

    assert excinfo.value.context["base"] == "al"
    assert excinfo.value.context["placeholder"] in {"2023", "latest"}


class ScriptedRunner:
    def __init__(self, errors: dict[str, VersionError]):
        self.errors = errors
        self.images: list[str] = []
        self._lock = threading.Lock()

    def run_command(self, image: str, command: tuple[str, ...]) -> str:
        with self._lock:
            self.images.append(image)
        raise self.errors[image]


def _exec_base(versions: str, version_tag: str = "al{{version}}", image: str = "amazonlinux:{{version}}") -> str:
    return f"""\
[[base]]
name = "al"
versions = {versions}
package-manager = "yum"
version-tag = "{version_tag}"
image = "{image}"
fetch-version = {{ type = "docker", image = "{image}", command = ["cat", "/etc/system-release"] }}
"""


def test_fatal_error_stops_retries_still_in_flight() -> None:
    runner = ScriptedRunner(
        {
            "amazonlinux:slow": VersionError("timeout", kind=VersionErrorKind.NETWORK_FAILURE),
            "amazonlinux:bad": VersionError("image not found", kind=VersionErrorKind.NOT_FOUND),
        }
    )
    resolver = VersionResolver(runner=runner, retry=RetryPolicy(attempts=4, base_delay=30.0))
    builder = LockBuilder(resolver, max_workers=2, date=DATE)

    started = time.monotonic()
    with pytest.raises(VersionError) as excinfo:
        builder.build(parse_config(_exec_base('["slow", "bad"]')))

    assert time.monotonic() - started < 10
    assert excinfo.value.kind == VersionErrorKind.NOT_FOUND
    assert excinfo.value.context["placeholder"] == "bad"
    assert runner.images.count("amazonlinux:slow") <= 1


def test_base_tag_rendering_empty_is_rejected() -> None:
    config = parse_config(_exec_base('["2"]', version_tag="{{#if nothing}}x{{/if}}"))

    with pytest.raises(ConfigError) as excinfo:
        LockBuilder(VersionResolver(runner=FakeRunner("2.0")), date=DATE).build(config)

    assert excinfo.value.context["base"] == "al"
    assert excinfo.value.context["placeholder"] == "2"
    assert excinfo.value.context["field"] == "version-tag"


def test_fetch_templates_use_the_resolution_date() -> None:
    runner = FakeRunner("2023.4.20240416")
    config = parse_config(_exec_base('["2023"]', image="amazonlinux:{{version}}-{{date}}"))

    LockBuilder(VersionResolver(runner=runner), date=DATE).build(config)

    assert runner.images == ["amazonlinux:2023-24-05-06"]
