import json

import pytest

from reverse_image import cli
from reverse_image.errors import SearchUnavailable
from reverse_image.io.models import ImageFingerprint, PipelineResult, PipelineState, QuerySignature, Unavailable


class _StubPipeline:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def run(self, image_bytes, query, **options):
        self.calls.append((query, options))
        if self.error is not None:
            raise self.error
        return PipelineResult(
            query=query,
            state=PipelineState.DONE,
            signature=QuerySignature(ImageFingerprint("0" * 16), Unavailable("disabled")),
        )


@pytest.fixture
def query_image(tmp_path, red_square_bytes):
    path = tmp_path / "query.png"
    path.write_bytes(red_square_bytes)
    return path


@pytest.fixture
def stub_pipeline(monkeypatch):
    def install(error=None):
        stub = _StubPipeline(error)
        monkeypatch.setattr(cli.ReverseImagePipeline, "from_settings", classmethod(lambda cls, settings: stub))
        return stub

    return install


def test_fingerprint_only_prints_hash(query_image, capsys):
    assert cli.main(["--image", str(query_image), "--fingerprint-only"]) == 0
    output = capsys.readouterr().out.strip()
    assert len(output) == 16
    int(output, 16)


def test_fingerprint_only_rejects_undecodable(tmp_path):
    path = tmp_path / "broken.png"
    path.write_bytes(b"not an image")
    assert cli.main(["--image", str(path), "--fingerprint-only"]) == cli.EXIT_INVALID_IMAGE


def test_query_required_for_search(query_image):
    assert cli.main(["--image", str(query_image)]) == 1


def test_search_unavailable_exit_code(query_image, stub_pipeline, tmp_path):
    stub_pipeline(SearchUnavailable("Missing SERPER_API_KEY"))
    code = cli.main(["--image", str(query_image), "--query", "mug", "--out", str(tmp_path / "out")])
    assert code == cli.EXIT_SEARCH_UNAVAILABLE


def test_run_writes_results(query_image, stub_pipeline, tmp_path):
    stub = stub_pipeline()
    out = tmp_path / "out"
    code = cli.main(
        ["--image", str(query_image), "--query", "mug", "--out", str(out), "--top-k", "3", "--embedding-weight", "0.2"]
    )
    assert code == 0
    assert json.loads((out / "results.json").read_text())["query"] == "mug"
    assert not (out / "results.parquet").exists()
    _, options = stub.calls[0]
    assert options["top_k"] == 3
    assert options["embedding_weight"] == 0.2
