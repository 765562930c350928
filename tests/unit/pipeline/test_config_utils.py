import os
import stat

import pytest
import yaml

from varflow.pipeline import config_utils


@pytest.fixture
def fake_program(tmp_path):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    program = bin_dir / "bwa"
    program.write_text("#!/bin/sh\n")
    program.chmod(program.stat().st_mode | stat.S_IXUSR)
    return str(program)


def test_load_system_config(tmp_path, monkeypatch):
    monkeypatch.setenv("VARFLOW_REF", "/refs")
    config_file = tmp_path / "varflow_system.yaml"
    config_file.write_text(yaml.safe_dump({"reference": {"fasta": "$VARFLOW_REF/genome.fa"},
                                           "resources": {"BWA": {"jobs": 2}}}))
    config, found = config_utils.load_system_config(work_dir=str(tmp_path))
    assert found == str(config_file)
    assert config["reference"]["fasta"] == "/refs/genome.fa"
    assert config["resources"]["bwa"] == {"jobs": 2}
    assert config["algorithm"] == {}


def test_load_system_config_missing(tmp_path):
    with pytest.raises(ValueError):
        config_utils.load_system_config(str(tmp_path / "nothere.yaml"), work_dir=str(tmp_path))
    config, found = config_utils.load_system_config(str(tmp_path / "nothere.yaml"), allow_missing=True)
    assert found is None
    assert config["resources"] == {}


@pytest.mark.parametrize(("config", "expected"), [
    ({}, 3),
    ({"resources": {"align": {"jobs": 1}}}, 1),
    ({"resources": {"align": {"jobs": "6"}}}, 6),
    ({"resources": {"call": {"jobs": 8}}}, 3),
    ({"resources": {"default": {"jobs": 4}}}, 4),
    ({"resources": {"default": {"jobs": 4}, "align": {"jobs": 2}}}, 2),
    ({"resources": {"align": "/usr/bin/align"}}, 3),
])
def test_get_max_concurrency(config, expected):
    assert config_utils.get_max_concurrency("align", config, 3) == expected


def test_get_max_concurrency_rejects_zero():
    with pytest.raises(ValueError):
        config_utils.get_max_concurrency("align", {"resources": {"align": {"jobs": 0}}})


def test_get_program_from_cmd(fake_program):
    config = {"resources": {"bwa": {"cmd": fake_program}}}
    assert config_utils.get_program("bwa", config) == fake_program


def test_get_program_from_path(fake_program, monkeypatch):
    monkeypatch.setenv("PATH", os.path.dirname(fake_program))
    assert config_utils.get_program("bwa", {"resources": {}}) == fake_program


def test_get_program_not_found(tmp_path, monkeypatch):
    monkeypatch.setenv("PATH", str(tmp_path))
    with pytest.raises(config_utils.CmdNotFound):
        config_utils.get_program("not_a_real_program_name", {"resources": {}})


@pytest.mark.parametrize(("pconfig", "default", "expected"), [
    (None, None, "bwa"),
    (None, "bwa-mem2", "bwa-mem2"),
    ("/opt/bwa", None, "/opt/bwa"),
    ({"cmd": "/opt/bwa"}, "other", "/opt/bwa"),
    ({"jobs": 2}, "other", "other"),
    ({"jobs": 2}, None, "bwa"),
])
def test_get_program_cmd(pconfig, default, expected):
    assert config_utils._get_program_cmd("bwa", pconfig, default) == expected


@pytest.mark.parametrize(("options", "expected"), [
    (None, []),
    ("-t 4 -M", ["-t", "4", "-M"]),
    (["MINLEN:36", 5], ["MINLEN:36", "5"]),
])
def test_get_options(options, expected):
    config = {"resources": {"trimmomatic": {"options": options}}} if options else {}
    assert config_utils.get_options("trimmomatic", config) == expected


def test_get_resources_falls_back_to_default():
    config = {"resources": {"default": {"jobs": 2}}}
    assert config_utils.get_resources("bwa", config) == {"jobs": 2}
