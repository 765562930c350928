"""Main entry point for running the per-sample variant pipeline.

Handles discovering samples, building the stage graph and running it to
completion, reporting a summary of the run.
"""
import collections
import os
import time

import yaml

from varflow import log, utils
from varflow.distributed.transaction import file_transaction
from varflow.log import logger, DEFAULT_LOG_DIR
from varflow.pipeline import config_utils, run_info, stages
from varflow.pipeline import datadict as dd
from varflow.provenance import profile

RunSummary = collections.namedtuple("RunSummary", ["success", "duration", "out_dir", "failures",
                                                   "aggregates"])

FAILURE_MANIFEST = "failed_samples.yaml"

def run_main(work_dir, config_file=None, fastq_pattern=None, run_info_yaml=None,
             config=None, graph=None, abort=None):
    """Run the pipeline on discovered samples, handling configuration and logging.

    Startup problems (no samples, an invalid graph, missing programs) raise
    before any sample is processed, as does a failure to write aggregate
    outputs. Individual sample failures are reported in the summary and the
    failure manifest without affecting its success flag.
    """
    start = time.time()
    work_dir = utils.safe_makedir(os.path.abspath(work_dir))
    if config is None:
        config, config_file = config_utils.load_system_config(config_file, work_dir)
    if config.get("log_dir", None) is None:
        config["log_dir"] = os.path.join(work_dir, DEFAULT_LOG_DIR)
    handler = log.setup_local_logging(config)
    try:
        if config_file:
            logger.info("System YAML configuration: %s" % os.path.abspath(config_file))
        return _run_toplevel(config, work_dir, start, fastq_pattern, run_info_yaml, graph, abort)
    finally:
        log.close_local_logging(handler)

def _run_toplevel(config, work_dir, start, fastq_pattern=None, run_info_yaml=None,
                  graph=None, abort=None):
    samples = _get_samples(config, fastq_pattern, run_info_yaml)
    if graph is None:
        stages.check_references(config)
        graph = stages.build_graph(config)
        stages.check_programs(graph, config)
    graph.validate()
    out_dir = utils.safe_makedir(os.path.join(work_dir, "final"))
    with profile.report("%s: %s samples" % (graph.name, len(samples))):
        result = graph.run(samples, work_dir, config, out_dir, abort)
    if result.failures:
        write_failure_manifest(result.failures, os.path.join(out_dir, FAILURE_MANIFEST), config)
    summary = RunSummary(True, time.time() - start, out_dir, result.failures, result.aggregates)
    report_summary(summary, [x[0] for x in samples])
    return summary

def _get_samples(config, fastq_pattern=None, run_info_yaml=None):
    if run_info_yaml:
        return run_info.samples_from_yaml(run_info_yaml)
    fastq_pattern = fastq_pattern or dd.get_fastq_pattern(config)
    if not fastq_pattern:
        raise run_info.NoSamplesFound("Need a fastq pattern or sample YAML file to find inputs")
    return run_info.discover_samples(fastq_pattern)

def write_failure_manifest(failures, out_file, config=None):
    """Record which samples failed and at which stage.
    """
    out = {"failed": [{"sample": x.key, "stage": x.stage, "error": x.error} for x in failures]}
    with file_transaction(config or {}, out_file) as tx_out_file:
        with open(tx_out_file, "w") as out_handle:
            yaml.safe_dump(out, out_handle, default_flow_style=False, allow_unicode=False)
    return out_file

def report_summary(summary, keys):
    failed = sorted(set(x.key for x in summary.failures))
    logger.info("Run finished: success=%s duration=%.1fs output=%s" %
                (summary.success, summary.duration, summary.out_dir))
    logger.info("Samples completed: %s of %s" % (len(keys) - len(failed), len(keys)))
    if failed:
        logger.info("Samples failed: %s" % ", ".join(failed))
    for name, out_file in sorted(summary.aggregates.items()):
        logger.info("Aggregate %s: %s" % (name, out_file or "no samples"))
