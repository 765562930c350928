#!/usr/bin/env python -Es
"""Run the per-sample variant pipeline over a set of paired fastq files.

The <config file> is a global YAML configuration file specifying reference
files, pattern libraries, quality thresholds and programs. An example
configuration file is in 'config/varflow_system.yaml'.

Inputs are either a glob pattern matching paired fastq files or a YAML file
with `details` entries listing each sample's files.

Usage:
  varflow_pipeline.py <config_file> [<fastq pattern or sample YAML>]
     --workdir directory to process in
     -j stage=N maximum simultaneous samples for a stage
"""
import argparse
import os
import signal
import sys
import threading

from varflow import utils
from varflow.pipeline import config_utils, version
from varflow.pipeline.main import run_main

def main(config_file, inputs=None, workdir=None, jobs=None):
    config, config_file = config_utils.load_system_config(config_file, workdir)
    for stage, njobs in (jobs or {}).items():
        config["resources"].setdefault(stage, {})["jobs"] = njobs
    kwargs = {"work_dir": workdir, "config_file": config_file, "config": config}
    if inputs and os.path.isfile(inputs) and inputs.endswith((".yaml", ".yml")):
        kwargs["run_info_yaml"] = os.path.abspath(inputs)
    elif inputs:
        kwargs["fastq_pattern"] = inputs
    abort = threading.Event()
    def _request_abort(signum, frame):
        sys.stderr.write("Interrupted: finishing running tasks without starting new ones\n")
        abort.set()
    signal.signal(signal.SIGINT, _request_abort)
    try:
        summary = run_main(abort=abort, **kwargs)
    except Exception as e:
        sys.stderr.write("varflow run failed: %s\n" % e)
        return 1
    print("Success: %s" % summary.success)
    print("Duration: %.1fs" % summary.duration)
    print("Output directory: %s" % summary.out_dir)
    return 0

def _parse_jobs(xs):
    out = {}
    for x in xs:
        stage, _, njobs = x.partition("=")
        if not stage or not njobs.isdigit():
            raise argparse.ArgumentTypeError("Expected stage=N for --jobs, got %s" % x)
        out[stage] = int(njobs)
    return out

def parse_cl_args(in_args):
    description = "Per-sample variant calling and cluster assignment pipeline."
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument("global_config", nargs="?", default="varflow_system.yaml",
                        help=("Global YAML configuration file specifying details about "
                              "references, thresholds and programs"))
    parser.add_argument("inputs", nargs="?",
                        help=("Glob pattern of paired fastq files or YAML file of samples "
                              "(optional, defaults to fastq_pattern in the configuration)"))
    parser.add_argument("-j", "--jobs", default=[], action="append",
                        help="Maximum simultaneous samples for a stage, as stage=N. "
                             "Can be specified multiple times.")
    parser.add_argument("--workdir", default=os.getcwd(),
                        help=("Directory to process in. Defaults to "
                              "current working directory"))
    parser.add_argument("-v", "--version", help="Print current version",
                        action="store_true")
    args = parser.parse_args(in_args)
    if args.version:
        print(version.__version__)
        sys.exit()
    try:
        jobs = _parse_jobs(args.jobs)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))
    return {"config_file": args.global_config, "inputs": args.inputs,
            "workdir": utils.safe_makedir(os.path.abspath(args.workdir)),
            "jobs": jobs}

if __name__ == "__main__":
    sys.exit(main(**parse_cl_args(sys.argv[1:])))
