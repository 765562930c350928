"""Stages of the per-sample variant pipeline and the external tools they run.

Reads are deduplicated, trimmed and aligned; variants are called on the
alignment; the alignment and calls are joined to build a consensus sequence
with coverage statistics; calls and statistics are joined for SNP filtering
and annotation; filtered SNPs and statistics are joined to assign a cluster.
Cluster rows and consensus sequences are collected into batch files.

Each task writes into the scoped work directory handed to it and returns its
declared outputs. Programs and extra options come from `resources` in the
system configuration.
"""
import os

from varflow.log import logger
from varflow.pipeline import config_utils
from varflow.pipeline import datadict as dd
from varflow.pipeline.graph import AggregateSpec, JoinSpec, PipelineGraph, StageSpec
from varflow.provenance import do

# stage name -> (configuration name, default program)
PROGRAMS = {
    "dedup": ("clumpify", "clumpify.sh"),
    "trim": ("trimmomatic", "trimmomatic"),
    "align": ("bwa", "bwa"),
    "samtools": ("samtools", "samtools"),
    "call": ("bcftools", "bcftools"),
    "consensus": ("consensus", "vcf2consensus"),
    "filter": ("snpfilter", "snpfilter"),
    "cluster": ("cluster", "assign_cluster"),
    "spoligotype": ("spoligotype", "SpoTyping.py"),
}

CLUSTER_TABLE = "clusters.tsv"
ALIGNMENT_FILE = "alignment.fasta"
SPOLIGOTYPE_TABLE = "spoligotypes.tsv"

def _program(stage, config):
    name, default = PROGRAMS[stage]
    return config_utils.get_program(name, config, default)

def _opts(stage, config):
    return config_utils.get_options(PROGRAMS[stage][0], config)

def _out(ctx, suffix):
    return os.path.join(ctx.work_dir, "%s%s" % (ctx.key, suffix))

def _threshold_args(config, names):
    thresholds = dd.get_thresholds(config)
    out = []
    for name in names:
        out += ["--%s" % name.replace("_", "-"), str(thresholds[name])]
    return out

# ## Tasks

def dedup(ctx):
    """Remove duplicate read pairs."""
    out1, out2 = _out(ctx, "_1.dedup.fastq.gz"), _out(ctx, "_2.dedup.fastq.gz")
    cmd = [_program("dedup", ctx.config), "in=%s" % ctx.inputs["fastq1"], "in2=%s" % ctx.inputs["fastq2"],
           "out=%s" % out1, "out2=%s" % out2, "dedupe=t", "subs=0"] + _opts("dedup", ctx.config)
    do.run(cmd, "Deduplicate reads", ctx.key, [do.file_nonempty(out1), do.file_nonempty(out2)])
    return {"dedup1": out1, "dedup2": out2}

def trim(ctx):
    """Adapter and quality trimming of paired reads, keeping only surviving pairs."""
    out1, out2 = _out(ctx, "_1.trim.fastq.gz"), _out(ctx, "_2.trim.fastq.gz")
    unpaired1, unpaired2 = _out(ctx, "_1.unpaired.fastq.gz"), _out(ctx, "_2.unpaired.fastq.gz")
    opts = _opts("trim", ctx.config) or ["SLIDINGWINDOW:10:20", "MINLEN:36"]
    cmd = [_program("trim", ctx.config), "PE", "-threads", "1", ctx.inputs["dedup1"], ctx.inputs["dedup2"],
           out1, unpaired1, out2, unpaired2] + opts
    do.run(cmd, "Trim reads", ctx.key, [do.file_nonempty(out1), do.file_nonempty(out2)])
    return {"trim1": out1, "trim2": out2}

def align(ctx):
    """Align trimmed reads to the reference, producing a sorted and indexed BAM."""
    out_file = _out(ctx, ".bam")
    samtools = _program("samtools", ctx.config)
    rg = "@RG\\tID:{0}\\tSM:{0}\\tPL:illumina".format(ctx.key)
    cmd = ("{bwa} mem -R '{rg}' {ref} {fq1} {fq2} | "
           "{samtools} sort -o {out_file} -").format(
               bwa=_program("align", ctx.config), rg=rg, ref=dd.get_ref_file(ctx.config),
               fq1=ctx.inputs["trim1"], fq2=ctx.inputs["trim2"], samtools=samtools,
               out_file=out_file)
    do.run(cmd, "Align reads", ctx.key, [do.file_nonempty(out_file)])
    do.run([samtools, "index", out_file], "Index alignment", ctx.key)
    return {"bam": out_file}

def call(ctx):
    """Pileup and call variants at every reference position."""
    out_file = _out(ctx, ".vcf.gz")
    bcftools = _program("call", ctx.config)
    cmd = ("{bcftools} mpileup -a AD,DP -f {ref} {bam} | "
           "{bcftools} call -m -Oz -o {out_file}").format(
               bcftools=bcftools, ref=dd.get_ref_file(ctx.config), bam=ctx.inputs["bam"],
               out_file=out_file)
    do.run(cmd, "Call variants", ctx.key, [do.file_nonempty(out_file)])
    return {"vcf": out_file}

def consensus(ctx):
    """Build a consensus sequence and coverage statistics from calls and alignment."""
    fasta = _out(ctx, ".consensus.fasta")
    stats = _out(ctx, ".stats.tsv")
    cmd = ([_program("consensus", ctx.config), "--sample", ctx.key, "--vcf", ctx.inputs["vcf"],
            "--bam", ctx.inputs["bam"], "--reference", dd.get_ref_file(ctx.config),
            "--fasta-out", fasta, "--stats-out", stats] +
           _threshold_args(ctx.config, ["min_mean_coverage", "min_site_coverage",
                                        "min_alt_proportion", "min_snp_quality",
                                        "min_nonsnp_quality"]) +
           _opts("consensus", ctx.config))
    do.run(cmd, "Consensus and statistics", ctx.key, [do.file_nonempty(fasta), do.file_nonempty(stats)])
    return {"consensus": fasta, "stats": stats}

def snp_filter(ctx):
    """Filter SNP calls by quality and annotate them against the annotated reference."""
    out_file = _out(ctx, ".snps.tsv")
    cmd = ([_program("filter", ctx.config), "--sample", ctx.key, "--vcf", ctx.inputs["vcf"],
            "--stats", ctx.inputs["stats"], "--annotation", dd.get_annotated_ref_file(ctx.config),
            "--out", out_file] +
           _threshold_args(ctx.config, ["min_site_coverage", "min_alt_proportion", "min_snp_quality"]) +
           _opts("filter", ctx.config))
    do.run(cmd, "Filter and annotate SNPs", ctx.key, [do.file_exists(out_file)])
    return {"snps": out_file}

def cluster(ctx):
    """Match filtered SNPs against the pattern libraries, writing a header and one row."""
    out_file = _out(ctx, ".cluster.tsv")
    cmd = ([_program("cluster", ctx.config), "--sample", ctx.key, "--snps", ctx.inputs["snps"],
            "--stats", ctx.inputs["stats"], "--cluster-patterns", dd.get_cluster_patterns(ctx.config),
            "--group-patterns", dd.get_group_patterns(ctx.config), "--out", out_file] +
           _threshold_args(ctx.config, ["min_mean_coverage"]) +
           _opts("cluster", ctx.config))
    do.run(cmd, "Assign cluster", ctx.key, [do.file_nonempty(out_file)])
    return {"cluster_row": out_file}

def spoligotype(ctx):
    """In silico spoligotyping from trimmed reads."""
    out_file = _out(ctx, ".spoligotype.tsv")
    cmd = ([_program("spoligotype", ctx.config), ctx.inputs["trim1"], ctx.inputs["trim2"],
            "-o", out_file] + _opts("spoligotype", ctx.config))
    do.run(cmd, "Spoligotype", ctx.key, [do.file_nonempty(out_file)])
    return {"spoligotype_row": out_file}

# ## Graph

def build_graph(config):
    """Assemble the pipeline graph, including optional branches enabled in the configuration.
    """
    graph = PipelineGraph("varflow")
    graph.add_source("reads", ["fastq1", "fastq2"])
    graph.add_stage(StageSpec("dedup", "reads", ["fastq1", "fastq2"], ["dedup1", "dedup2"], 4), dedup)
    graph.add_stage(StageSpec("trim", "dedup", ["dedup1", "dedup2"], ["trim1", "trim2"], 4), trim)
    graph.add_stage(StageSpec("align", "trim", ["trim1", "trim2"], ["bam"], 1), align)
    graph.add_stage(StageSpec("call", "align", ["bam"], ["vcf"], 2), call)
    graph.add_join(JoinSpec("align_call", ["align", "call"]))
    graph.add_stage(StageSpec("consensus", "align_call", ["bam", "vcf"], ["consensus", "stats"], 4),
                    consensus)
    graph.add_join(JoinSpec("call_stats", ["call", "consensus"]))
    graph.add_stage(StageSpec("filter", "call_stats", ["vcf", "stats"], ["snps"], 4), snp_filter)
    graph.add_join(JoinSpec("snps_stats", ["filter", "consensus"]))
    graph.add_stage(StageSpec("cluster", "snps_stats", ["snps", "stats"], ["cluster_row"], 4), cluster)
    graph.add_aggregate(AggregateSpec("clusters", "cluster", "cluster_row", CLUSTER_TABLE, True))
    graph.add_aggregate(AggregateSpec("alignment", "consensus", "consensus", ALIGNMENT_FILE, False))
    if dd.get_spoligotype(config):
        graph.add_stage(StageSpec("spoligotype", "trim", ["trim1", "trim2"], ["spoligotype_row"], 2),
                        spoligotype)
        graph.add_aggregate(AggregateSpec("spoligotypes", "spoligotype", "spoligotype_row",
                                          SPOLIGOTYPE_TABLE, True))
    return graph

def check_programs(graph, config):
    """Ensure external programs for every stage in the graph are available.

    Raises CmdNotFound before any sample is processed.
    """
    needed = set(graph.stages())
    if "align" in needed:
        needed.add("samtools")
    for stage in sorted(needed):
        if stage in PROGRAMS:
            logger.debug("Using %s for %s" % (_program(stage, config), stage))

def check_references(config):
    """Ensure static reference inputs are configured, raising ValueError if not.
    """
    missing = [x for x in ["ref_file", "annotated_ref_file", "cluster_patterns", "group_patterns"]
               if not getattr(dd, "is_set_" + x)(config)]
    if missing:
        raise ValueError("Missing reference configuration for: %s" %
                         ", ".join("/".join(dd.get_keys(x)) for x in missing))
