import os

import pytest
import yaml

from varflow.pipeline import run_info


@pytest.mark.parametrize(("files", "expected"), [
    (["A_R1.fastq.gz", "A_R2.fastq.gz"], "A"),
    (["A_1.fq.gz", "A_2.fq.gz"], "A"),
    (["S1_L001_R1_001.fastq.gz", "S1_L001_R2_001.fastq.gz"], "S1_L001"),
    (["ERR1234.1.fastq", "ERR1234.2.fastq"], "ERR1234"),
])
def test_pair_key(files, expected):
    pairs = run_info.combine_pairs(files)
    assert len(pairs) == 1
    assert run_info.pair_key(pairs[0]) == expected


def test_combine_pairs_keeps_read_one_first():
    files = ["/reads/B_R2.fastq.gz", "/reads/A_R1.fastq.gz", "/reads/B_R1.fastq.gz",
             "/reads/A_R2.fastq.gz"]
    pairs = run_info.combine_pairs(files)
    assert sorted(pairs) == [["/reads/A_R1.fastq.gz", "/reads/A_R2.fastq.gz"],
                             ["/reads/B_R1.fastq.gz", "/reads/B_R2.fastq.gz"]]


def test_combine_pairs_leaves_singles():
    pairs = run_info.combine_pairs(["A_R1.fastq.gz", "B_R1.fastq.gz"])
    assert pairs == [["A_R1.fastq.gz"], ["B_R1.fastq.gz"]]


def test_rstrip_extra():
    assert run_info.rstrip_extra("sample_R") == "sample"
    assert run_info.rstrip_extra("sample.fastq") == "sample"
    assert run_info.rstrip_extra("sample") == "sample"


def test_discover_samples(fastq_dir):
    samples = run_info.discover_samples(os.path.join(fastq_dir, "*.fastq.gz"))
    assert [x[0] for x in samples] == ["A", "B", "C"]
    assert samples[0][1] == {"fastq1": os.path.join(fastq_dir, "A_R1.fastq.gz"),
                             "fastq2": os.path.join(fastq_dir, "A_R2.fastq.gz")}


def test_discover_samples_skips_unpaired(fastq_dir):
    os.remove(os.path.join(fastq_dir, "C_R2.fastq.gz"))
    samples = run_info.discover_samples(os.path.join(fastq_dir, "*.fastq.gz"))
    assert [x[0] for x in samples] == ["A", "B"]


def test_discover_samples_no_match(tmp_path):
    with pytest.raises(run_info.NoSamplesFound):
        run_info.discover_samples(str(tmp_path / "*.fastq.gz"))


def test_samples_from_yaml_resolves_relative_paths(tmp_path):
    in_file = tmp_path / "samples.yaml"
    in_file.write_text(yaml.safe_dump({"details": [
        {"description": "patient 1", "files": ["reads/p1_1.fq.gz", "reads/p1_2.fq.gz"]}]}))
    samples = run_info.samples_from_yaml(str(in_file))
    assert samples == [("patient_1", {"fastq1": str(tmp_path / "reads" / "p1_1.fq.gz"),
                                      "fastq2": str(tmp_path / "reads" / "p1_2.fq.gz")})]


def test_samples_from_yaml_needs_pairs(tmp_path):
    in_file = tmp_path / "samples.yaml"
    in_file.write_text(yaml.safe_dump({"details": [{"description": "A", "files": ["a.fq"]}]}))
    with pytest.raises(ValueError):
        run_info.samples_from_yaml(str(in_file))


def test_duplicate_keys_are_rejected(tmp_path):
    in_file = tmp_path / "samples.yaml"
    in_file.write_text(yaml.safe_dump({"details": [
        {"description": "A", "files": ["a1.fq", "a2.fq"]},
        {"description": "A", "files": ["b1.fq", "b2.fq"]}]}))
    with pytest.raises(ValueError) as excinfo:
        run_info.samples_from_yaml(str(in_file))
    assert "Duplicate" in str(excinfo.value)


def test_clean_key():
    assert run_info.clean_key("a b/c:d") == "a_b_c_d"


@pytest.mark.parametrize("key", ["", ".", ".."])
def test_clean_key_rejects_unusable_directory_names(key):
    with pytest.raises(ValueError):
        run_info.clean_key(key)


def test_pair_without_sample_name(tmp_path):
    for read in ["1", "2"]:
        (tmp_path / ("_R%s.fastq.gz" % read)).write_text("@r\nACGT\n+\nIIII\n")
    with pytest.raises(run_info.NoSamplesFound):
        run_info.discover_samples(str(tmp_path / "*.fastq.gz"))


def test_samples_from_yaml_rejects_dot_description(tmp_path):
    in_file = tmp_path / "samples.yaml"
    in_file.write_text(yaml.safe_dump({"details": [
        {"description": "..", "files": ["a1.fq", "a2.fq"]}]}))
    with pytest.raises(ValueError):
        run_info.samples_from_yaml(str(in_file))
