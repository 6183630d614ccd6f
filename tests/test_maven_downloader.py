"""Tests for artifact download orchestration."""

import pytest

from registry.maven.context import MirrorDescriptor, ResolutionContext, ServerCredentials
from registry.maven.downloader import ArtifactDownloader, DownloadError, MetadataNotFoundError
from registry.maven.models import Coordinate, RepositoryDescriptor

from conftest import POM, status_server
from test_maven_metadata import SNAPSHOT_METADATA

FRED = Coordinate("fred", "fred", "1.0.0")


def _pom(group, artifact, version, extra=""):
    return (
        f"<project><groupId>{group}</groupId><artifactId>{artifact}</artifactId>"
        f"<version>{version}</version>{extra}</project>"
    ).encode("utf-8")


def _local_artifact(root, group, artifact, version, jar=b"I'm a jar", packaging=None):
    target = root.joinpath(*group.split("."), artifact, version)
    target.mkdir(parents=True, exist_ok=True)
    extra = f"<packaging>{packaging}</packaging>" if packaging else ""
    (target / f"{artifact}-{version}.pom").write_bytes(_pom(group, artifact, version, extra))
    if jar is not None:
        (target / f"{artifact}-{version}.jar").write_bytes(jar)
    return Coordinate(group, artifact, version)


def test_error_names_every_attempted_repository(repo_server, context):
    repo1 = repo_server(status_server(500))
    repo2 = repo_server(status_server(400))
    repositories = [
        RepositoryDescriptor(id="id", uri=repo1.url),
        RepositoryDescriptor(id="id2", uri=repo2.url),
    ]

    with pytest.raises(DownloadError) as exc_info:
        ArtifactDownloader(context).download(FRED, repositories=repositories)

    message = str(exc_info.value)
    assert repo1.url in message
    assert repo2.url in message
    assert exc_info.value.failures == {repo1.url: "HTTP 500", repo2.url: "HTTP 400"}


def test_timestamped_snapshot_is_fetched_from_snapshot_directory(repo_server, context):
    wanted = "/maven/fred/fred/2020.0.2-SNAPSHOT/fred-2020.0.2-20210127.131051-2.pom"
    server = repo_server(lambda r: (200, POM) if r.path == wanted else (404, b""))
    repositories = [RepositoryDescriptor(id="id", uri=server.url, username="user", password="pass")]

    artifact = ArtifactDownloader(context).download(
        Coordinate("fred", "fred", "2020.0.2-20210127.131051-2"), repositories=repositories
    )

    assert artifact.filename == "fred-2020.0.2-20210127.131051-2.pom"
    assert artifact.content == POM


def test_floating_snapshot_resolves_through_metadata(repo_server, context):
    base = "/maven/org/springframework/cloud/spring-cloud-dataflow-build/2.10.0-SNAPSHOT/"

    def dispatch(request):
        if request.path == base + "maven-metadata.xml":
            return 200, SNAPSHOT_METADATA
        if request.path == base + "spring-cloud-dataflow-build-2.10.0-20220201.001946-85.pom":
            return 200, POM
        return 404, b""

    server = repo_server(dispatch)
    coordinate = Coordinate("org.springframework.cloud", "spring-cloud-dataflow-build", "2.10.0-SNAPSHOT")

    artifact = ArtifactDownloader(context).download(coordinate, repositories=[RepositoryDescriptor(id="s", uri=server.url)])

    assert artifact.filename == "spring-cloud-dataflow-build-2.10.0-20220201.001946-85.pom"


def test_snapshot_without_metadata_requests_literal_file(repo_server, context):
    server = repo_server(lambda r: (200, POM) if r.path.endswith("fred-1.0-SNAPSHOT.pom") else (404, b""))

    artifact = ArtifactDownloader(context).download(
        Coordinate("fred", "fred", "1.0-SNAPSHOT"), repositories=[RepositoryDescriptor(id="s", uri=server.url)]
    )

    assert artifact.filename == "fred-1.0-SNAPSHOT.pom"


def test_snapshot_metadata_skips_repositories_without_snapshots(repo_server, context):
    releases = repo_server(status_server(404))
    snapshots = repo_server(lambda r: (200, POM) if r.path.endswith(".pom") else (404, b""))
    repositories = [
        RepositoryDescriptor(id="releases", uri=releases.url, snapshots_enabled=False),
        RepositoryDescriptor(id="snapshots", uri=snapshots.url),
    ]

    ArtifactDownloader(context).download(Coordinate("fred", "fred", "1.0-SNAPSHOT"), repositories=repositories)

    assert not any("maven-metadata" in path for path in releases.paths())
    assert any("maven-metadata" in path for path in snapshots.paths())


def test_anonymous_request_used_when_credentials_rejected(repo_server, context):
    server = repo_server(lambda r: (401, b"") if r.authorization else (200, POM))
    repositories = [RepositoryDescriptor(id="id", uri=server.url, username="user", password="pass")]

    artifact = ArtifactDownloader(context).download(FRED, repositories=repositories)

    assert artifact.repository.uri == server.url


def test_authentication_used_when_repository_requires_it(repo_server, context):
    server = repo_server(lambda r: (200, POM) if r.authorization else (401, b""))
    repositories = [RepositoryDescriptor(id="id", uri=server.url, username="user", password="pass")]

    ArtifactDownloader(context).download(FRED, repositories=repositories)

    assert server.requests[-1].authorization is not None


def test_unresolvable_credentials_are_not_used(repo_server, context, monkeypatch):
    monkeypatch.delenv("ARTIFACTORY_USERNAME", raising=False)
    server = repo_server(lambda r: (401, b"") if r.authorization else (200, POM))
    repositories = [RepositoryDescriptor(
        id="id", uri=server.url,
        username="${env.ARTIFACTORY_USERNAME}", password="${env.ARTIFACTORY_USERNAME}",
    )]

    ArtifactDownloader(context).download(FRED, repositories=repositories)

    assert all(r.authorization is None for r in server.requests)


def test_first_valid_repository_wins(repo_server, context):
    first = repo_server(lambda r: (200, POM))
    second = repo_server(lambda r: (200, POM))
    repositories = [RepositoryDescriptor(id="a", uri=first.url), RepositoryDescriptor(id="b", uri=second.url)]

    artifact = ArtifactDownloader(context).download(FRED, repositories=repositories)

    assert artifact.repository.id == "a"
    assert not any(path.endswith(".pom") for path in second.paths())


def test_falls_through_to_next_repository(repo_server, context):
    empty = repo_server(lambda r: (200, b""))
    good = repo_server(lambda r: (200, POM))
    repositories = [RepositoryDescriptor(id="empty", uri=empty.url), RepositoryDescriptor(id="good", uri=good.url)]

    artifact = ArtifactDownloader(context).download(FRED, repositories=repositories)

    assert artifact.repository.id == "good"


def _drops_descriptors(request):
    if request.path.endswith(".pom"):
        return None
    return 200, b""


def test_exhausted_retries_move_on_to_next_repository(repo_server, context):
    flaky = repo_server(_drops_descriptors)
    good = repo_server(lambda r: (200, POM))
    repositories = [RepositoryDescriptor(id="flaky", uri=flaky.url), RepositoryDescriptor(id="good", uri=good.url)]

    artifact = ArtifactDownloader(context).download(FRED, repositories=repositories)

    assert artifact.repository.id == "good"
    assert len([p for p in flaky.paths() if p.endswith(".pom")]) == 2


def test_exhausted_retries_are_the_recorded_reason(repo_server, context):
    flaky = repo_server(_drops_descriptors)

    with pytest.raises(DownloadError) as exc_info:
        ArtifactDownloader(context).download(FRED, repositories=[RepositoryDescriptor(id="flaky", uri=flaky.url)])

    assert "failed after 2 attempts" in exc_info.value.failures[flaky.url]


def test_unreachable_and_duplicate_repositories_are_dropped(repo_server, context, closed_port):
    server = repo_server(lambda r: (200, POM))
    downloader = ArtifactDownloader(context)

    candidates = downloader.candidate_repositories(None, [
        RepositoryDescriptor(id="dead", uri=f"http://127.0.0.1:{closed_port}"),
        RepositoryDescriptor(id="first", uri=server.url),
        RepositoryDescriptor(id="again", uri=server.url + "/"),
        RepositoryDescriptor(id="blocked", uri="http://0.0.0.0"),
    ])

    assert [r.id for r in candidates] == ["first"]


def test_no_candidates_raises_download_error(context):
    with pytest.raises(DownloadError, match="no reachable repositories"):
        ArtifactDownloader(context).download(FRED, repositories=[RepositoryDescriptor(id="x", uri="http://0.0.0.0")])


def test_release_coordinate_skips_release_disabled_repository(repo_server, context):
    server = repo_server(lambda r: (200, POM))

    with pytest.raises(DownloadError) as exc_info:
        ArtifactDownloader(context).download(
            FRED, repositories=[RepositoryDescriptor(id="s", uri=server.url, releases_enabled=False)]
        )

    assert exc_info.value.failures == {server.url: "releases disabled"}


class TestLocalRepository:

    def test_missing_jar_is_invalid(self, tmp_path, context):
        coordinate = _local_artifact(tmp_path, "com.bad", "bad-artifact", "1", jar=None)
        local = RepositoryDescriptor.for_directory("local", tmp_path, snapshots_enabled=False, known_to_exist=True)

        with pytest.raises(DownloadError, match="missing jar"):
            ArtifactDownloader(context).download(coordinate, repositories=[local])

    def test_empty_jar_is_invalid(self, tmp_path, context):
        coordinate = _local_artifact(tmp_path, "com.bad", "bad-artifact", "1", jar=b"")
        local = RepositoryDescriptor.for_directory("local", tmp_path, snapshots_enabled=False, known_to_exist=True)

        with pytest.raises(DownloadError, match="empty jar"):
            ArtifactDownloader(context).download(coordinate, repositories=[local])

    def test_pom_packaging_needs_no_jar(self, tmp_path, context):
        coordinate = _local_artifact(tmp_path, "com.example", "parent", "3", jar=None, packaging="pom")
        local = RepositoryDescriptor.for_directory("local", tmp_path)

        artifact = ArtifactDownloader(context).download(coordinate, repositories=[local])

        assert artifact.packaging == "pom"

    def test_custom_local_repository_keeps_its_uri(self, tmp_path, http_client):
        coordinate = _local_artifact(tmp_path, "org.openrewrite", "rewrite", "1.0.0")
        context = ResolutionContext(
            http_client=http_client,
            local_repository=RepositoryDescriptor.for_directory("local", tmp_path, known_to_exist=True),
        )

        artifact = ArtifactDownloader(context).download(coordinate)

        assert artifact.repository.uri.startswith(tmp_path.resolve().as_uri())
        assert artifact.filename == "rewrite-1.0.0.pom"

    def test_local_repository_is_consulted_before_remote(self, tmp_path, repo_server, context):
        coordinate = _local_artifact(tmp_path, "fred", "fred", "1.0.0")
        server = repo_server(lambda r: (200, POM))
        context.local_repository = RepositoryDescriptor.for_directory("local", tmp_path)

        artifact = ArtifactDownloader(context).download(
            coordinate, repositories=[RepositoryDescriptor(id="remote", uri=server.url)]
        )

        assert artifact.repository.id == "local"
        assert not any(path.endswith(".pom") for path in server.paths())

    def test_local_snapshot_falls_back_to_literal_file(self, tmp_path, context):
        coordinate = _local_artifact(tmp_path, "fred", "fred", "1.0-SNAPSHOT")
        local = RepositoryDescriptor.for_directory("local", tmp_path)

        artifact = ArtifactDownloader(context).download(coordinate, repositories=[local])

        assert artifact.filename == "fred-1.0-SNAPSHOT.pom"


def test_relocation_is_followed(repo_server, context):
    relocated = _pom("fred", "fred", "1.0.0", "<distributionManagement><relocation>"
                     "<groupId>org.fred</groupId></relocation></distributionManagement>")

    def dispatch(request):
        if request.path.endswith("/org/fred/fred/1.0.0/fred-1.0.0.pom"):
            return 200, _pom("org.fred", "fred", "1.0.0")
        if request.path.endswith("/fred/fred/1.0.0/fred-1.0.0.pom"):
            return 200, relocated
        return 404, b""

    server = repo_server(dispatch)

    artifact = ArtifactDownloader(context).download(FRED, repositories=[RepositoryDescriptor(id="r", uri=server.url)])

    assert artifact.coordinate == Coordinate("org.fred", "fred", "1.0.0")
    assert artifact.relocated_from == FRED


def test_project_poms_resolve_without_repositories(tmp_path, context):
    pom_path = tmp_path / "module" / "pom.xml"
    content = _pom("fred", "fred", "1.0.0")

    artifact = ArtifactDownloader(context, project_poms={pom_path: content}).download(FRED)

    assert artifact.content == content
    assert artifact.filename == "pom.xml"
    assert artifact.repository.id == "project"


def test_mirror_replaces_matching_repository(repo_server, http_client):
    mirror = repo_server(lambda r: (200, POM))
    context = ResolutionContext(
        http_client=http_client,
        allow_local_addresses=True,
        mirrors=[MirrorDescriptor(id="corp", url=mirror.url, mirror_of="*,!internal")],
    )

    artifact = ArtifactDownloader(context).download(
        FRED, repositories=[RepositoryDescriptor(id="central", uri="https://repo.example.invalid/maven2")]
    )

    assert artifact.repository.id == "corp"
    assert artifact.repository.uri == mirror.url


def test_server_credentials_fill_in_by_repository_id(repo_server, http_client):
    server = repo_server(lambda r: (200, POM) if r.authorization else (401, b""))
    context = ResolutionContext(
        http_client=http_client,
        allow_local_addresses=True,
        servers=[ServerCredentials(id="secured", username="user", password="pass")],
    )

    ArtifactDownloader(context).download(FRED, repositories=[RepositoryDescriptor(id="secured", uri=server.url)])

    assert server.requests[-1].authorization is not None


def test_download_metadata_merges_candidates(tmp_path, context):
    for version in ("1.0.0", "1.1.0"):
        (tmp_path / "fred" / "fred" / version).mkdir(parents=True)
    local = RepositoryDescriptor.for_directory("file", tmp_path, derive_metadata_if_missing=True)

    doc = ArtifactDownloader(context).download_metadata(Coordinate("fred", "fred"), [local])

    assert doc.versioning.versions == ("1.0.0", "1.1.0")


def test_download_metadata_not_found(repo_server, context):
    server = repo_server(status_server(404))

    with pytest.raises(MetadataNotFoundError) as exc_info:
        ArtifactDownloader(context).download_metadata(
            Coordinate("fred", "fred"), [RepositoryDescriptor(id="r", uri=server.url)]
        )

    assert server.url in str(exc_info.value)


def test_download_requires_a_version(context):
    with pytest.raises(ValueError, match="has no version"):
        ArtifactDownloader(context).download(Coordinate("fred", "fred"))
