import json
import os
import signal
import socket
import subprocess
import sys
import time
from pathlib import Path

import pytest
import requests

from universal_mock.exceptions import FlagParseError
from universal_mock.server import build_parser, main

PROJECT_ROOT = Path(__file__).resolve().parents[1]


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.mark.parametrize("flag", ["-h", "--help"])
def test_help_prints_usage_and_config_example(workdir, capsys, flag):
    assert main([flag], config_file=workdir / "config.json") == 0

    out = capsys.readouterr().out
    assert "usage: universal-mock-service" in out
    assert "--responseContentType" in out
    assert '"interfaceAndPort": "localhost:20000"' in out


def test_help_wins_over_missing_response_file(workdir, capsys):
    assert main(["--responseFile", "missing.txt", "-h"], config_file=workdir / "config.json") == 0


def test_missing_response_file_exits_1(workdir, capsys):
    assert main(["--responseFile", "missing.txt"], config_file=workdir / "config.json") == 1

    err = capsys.readouterr().err
    assert "Response file missing.txt does not exist or is a directory" in err


def test_response_file_from_config_file_is_checked(workdir, capsys):
    config = workdir / "config.json"
    config.write_text(json.dumps({"responseFile": "from-config.txt"}))

    assert main([], config_file=config) == 1
    assert "from-config.txt" in capsys.readouterr().err


def test_directory_as_response_file_exits_1(workdir, capsys):
    (workdir / "responses").mkdir()

    assert main(["--responseFile", "responses"], config_file=workdir / "config.json") == 1


@pytest.mark.parametrize(
    "argv",
    [["--unknown"], ["--interfaceAndPort"], ["--responseFile", ""], ["-v", "extra"]],
)
def test_flag_errors_exit_1(workdir, capsys, argv):
    assert main(argv, config_file=workdir / "config.json") == 1
    assert "error parsing flags" in capsys.readouterr().err


def test_invalid_interface_exits_1(workdir, capsys, response_file):
    argv = ["--interfaceAndPort", "no-port-here", "--responseFile", str(response_file)]

    assert main(argv, config_file=workdir / "config.json") == 1
    assert "missing port" in capsys.readouterr().err


def test_port_in_use_exits_1(workdir, capsys, response_file):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as taken:
        taken.bind(("127.0.0.1", 0))
        taken.listen(1)
        port = taken.getsockname()[1]
        argv = ["--interfaceAndPort", f"127.0.0.1:{port}", "--responseFile", str(response_file)]

        assert main(argv, config_file=workdir / "config.json") == 1

    assert "could not listen on" in capsys.readouterr().err


def test_parser_accepts_single_dash_spellings():
    args = build_parser().parse_args(
        ["-v", "-interfaceAndPort", ":9090", "-responseFile", "r.xml", "-responseContentType", "a/b"]
    )

    assert args.verbose is True
    assert args.interface_and_port == ":9090"
    assert args.response_file == "r.xml"
    assert args.response_content_type == "a/b"


def test_parser_leaves_unset_flags_as_none():
    args = build_parser().parse_args([])

    assert args.verbose is None
    assert args.interface_and_port is None
    assert args.help is False


def test_parser_raises_instead_of_exiting():
    with pytest.raises(FlagParseError):
        build_parser().parse_args(["--bogus"])


@pytest.mark.skipif(sys.platform == "win32", reason="needs POSIX signals")
def test_sigterm_stops_the_process_gracefully(tmp_path, free_port):
    (tmp_path / "response.txt").write_bytes(b"<pong/>")
    env = dict(os.environ, PYTHONPATH=os.pathsep.join(filter(None, [str(PROJECT_ROOT), os.environ.get("PYTHONPATH")])))
    process = subprocess.Popen(
        [sys.executable, "-m", "universal_mock", "--interfaceAndPort", f"127.0.0.1:{free_port}"],
        cwd=tmp_path,
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )
    try:
        url = f"http://127.0.0.1:{free_port}/anything"
        deadline = time.monotonic() + 15
        while True:
            try:
                response = requests.get(url, timeout=1)
                break
            except requests.ConnectionError:
                if time.monotonic() > deadline or process.poll() is not None:
                    raise
                time.sleep(0.1)

        assert response.status_code == 200
        assert response.headers["Content-Type"] == "text/xml; charset=UTF-8"
        assert response.content == b"<pong/>"

        process.send_signal(signal.SIGTERM)
        _, err = process.communicate(timeout=15)
    finally:
        if process.poll() is None:
            process.kill()
            process.communicate()

    assert process.returncode == 0
    assert b"Starting mock service" in err
    assert b"Shutting down server..." in err
    assert b"Server stopped" in err
