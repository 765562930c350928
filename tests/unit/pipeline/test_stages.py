import pytest

from varflow.distributed.multi import TaskContext
from varflow.pipeline import config_utils, stages

CONFIG = {
    "reference": {"fasta": "/refs/genome.fa", "annotated": "/refs/genome.gbk"},
    "patterns": {"cluster": "/refs/clusters.csv", "group": "/refs/groups.csv"},
    "algorithm": {"min_mean_coverage": 30},
    "resources": {"trimmomatic": {"options": "MINLEN:50"}},
}


@pytest.fixture
def mock_run(mocker):
    mocker.patch("varflow.pipeline.stages.config_utils.get_program",
                 side_effect=lambda name, config, default=None: "/bin/%s" % name)
    yield mocker.patch("varflow.pipeline.stages.do.run")


def _ctx(stage, inputs):
    return TaskContext(stage, "S1", inputs, "/tx/S1", CONFIG)


def _cmd(mock_run, i=0):
    args = mock_run.call_args_list[i][0]
    return args[0] if isinstance(args[0], str) else " ".join(args[0])


def test_dedup(mock_run):
    out = stages.dedup(_ctx("dedup", {"fastq1": "a_1.fq", "fastq2": "a_2.fq"}))
    assert out == {"dedup1": "/tx/S1/S1_1.dedup.fastq.gz", "dedup2": "/tx/S1/S1_2.dedup.fastq.gz"}
    cmd = _cmd(mock_run)
    assert cmd.startswith("/bin/clumpify in=a_1.fq in2=a_2.fq")
    assert mock_run.call_args[0][2] == "S1"


def test_trim_uses_configured_options(mock_run):
    out = stages.trim(_ctx("trim", {"dedup1": "d1.fq", "dedup2": "d2.fq"}))
    assert sorted(out) == ["trim1", "trim2"]
    assert _cmd(mock_run).endswith("MINLEN:50")


def test_align_pipes_into_sort_and_indexes(mock_run):
    out = stages.align(_ctx("align", {"trim1": "t1.fq", "trim2": "t2.fq"}))
    assert out == {"bam": "/tx/S1/S1.bam"}
    cmd = _cmd(mock_run)
    assert "/bin/bwa mem" in cmd
    assert "/refs/genome.fa t1.fq t2.fq |" in cmd
    assert "ID:S1" in cmd
    assert _cmd(mock_run, 1) == "/bin/samtools index /tx/S1/S1.bam"


def test_consensus_passes_thresholds(mock_run):
    out = stages.consensus(_ctx("consensus", {"bam": "S1.bam", "vcf": "S1.vcf.gz"}))
    assert sorted(out) == ["consensus", "stats"]
    cmd = _cmd(mock_run)
    assert "--min-mean-coverage 30" in cmd
    assert "--min-site-coverage 5" in cmd


def test_cluster(mock_run):
    out = stages.cluster(_ctx("cluster", {"snps": "S1.snps.tsv", "stats": "S1.stats.tsv"}))
    assert out == {"cluster_row": "/tx/S1/S1.cluster.tsv"}
    assert "--cluster-patterns /refs/clusters.csv" in _cmd(mock_run)


def test_failed_command_propagates(mock_run):
    mock_run.side_effect = IOError("External command failed")
    with pytest.raises(IOError):
        stages.call(_ctx("call", {"bam": "S1.bam"}))


def test_check_references():
    stages.check_references(CONFIG)
    with pytest.raises(ValueError) as excinfo:
        stages.check_references({"reference": {"fasta": "/refs/genome.fa"}})
    assert "patterns/cluster" in str(excinfo.value)


def test_check_programs_missing(mocker):
    mocker.patch("varflow.pipeline.stages.config_utils.get_program",
                 side_effect=config_utils.CmdNotFound("bwa"))
    with pytest.raises(config_utils.CmdNotFound):
        stages.check_programs(stages.build_graph(CONFIG), CONFIG)


def test_check_programs_includes_samtools(mocker):
    get_program = mocker.patch("varflow.pipeline.stages.config_utils.get_program",
                               return_value="/bin/tool")
    stages.check_programs(stages.build_graph(CONFIG), CONFIG)
    names = sorted(x[0][0] for x in get_program.call_args_list)
    assert names == ["bcftools", "bwa", "clumpify", "cluster", "consensus", "samtools",
                     "snpfilter", "trimmomatic"]
