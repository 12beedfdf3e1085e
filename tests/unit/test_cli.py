import io
import json
import tarfile

import pytest

from iqps import __version__
from iqps.presentation.cli import main as cli_main


@pytest.fixture
def cli_env(monkeypatch, storage_root, db_url):
    monkeypatch.setenv("IQPS_DB_URL", db_url)
    monkeypatch.setenv("IQPS_STATIC_FILE_STORAGE_LOCATION", str(storage_root))
    monkeypatch.setenv("IQPS_UPLOADED_QPS_PATH", "/iqps/uploaded")
    monkeypatch.setenv("IQPS_LIBRARY_QPS_PATH", "/peqp/qp")
    monkeypatch.delenv("IQPS_SLACK_WEBHOOK_URL", raising=False)
    monkeypatch.delenv("IQPS_ADMIN_TOKENS", raising=False)
    return storage_root


def test_cli_import_library_parser_flags():
    parser = cli_main.create_parser()
    args = parser.parse_args(
        ["import-library", "--manifest", "papers.json", "--archive", "papers.tar.gz", "--json"]
    )

    assert args.command == "import-library"
    assert args.manifest == "papers.json"
    assert args.archive == "papers.tar.gz"
    assert args.json is True


def test_cli_search_parser_defaults():
    args = cli_main.create_parser().parse_args(["search", "data structures"])

    assert args.query == "data structures"
    assert args.exam == ""
    assert args.json is False


def test_cli_version(capsys):
    assert cli_main.run_cli(["--version"]) == 0
    assert __version__ in capsys.readouterr().out


def test_cli_init_db_creates_schema(cli_env, capsys):
    assert cli_main.run_cli(["init-db"]) == 0
    assert "Catalog schema ready (sqlite)" in capsys.readouterr().out


def test_cli_search_reports_unavailable_backend(cli_env, capsys):
    assert cli_main.run_cli(["search", "algorithms"]) == 1
    assert "Error:" in capsys.readouterr().err


def test_cli_import_library_prints_json_report(cli_env, tmp_path, capsys):
    manifest = tmp_path / "qp.json"
    manifest.write_text(
        json.dumps(
            [
                {
                    "course_code": "CS10001",
                    "course_name": "Programming and Data Structures",
                    "year": 2019,
                    "exam": "endsem",
                    "semester": "autumn",
                    "filename": "pds.pdf",
                }
            ]
        ),
        encoding="utf-8",
    )
    archive = tmp_path / "qp.tar.gz"
    data = b"%PDF-1.4 pds"
    with tarfile.open(archive, "w:gz") as tar:
        info = tarfile.TarInfo(name="qp/pds.pdf")
        info.size = len(data)
        tar.addfile(info, io.BytesIO(data))

    code = cli_main.run_cli(["import-library", "--manifest", str(manifest), "--archive", str(archive), "--json"])

    assert code == 0
    report = json.loads(capsys.readouterr().out)
    assert report["imported"] == [1]
    assert report["error"] is None
    assert (cli_env / "peqp" / "qp" / "1_pds.pdf").read_bytes() == data
