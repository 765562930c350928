"""Retrieve run information describing samples to process in a pipeline.

This handles two ways of getting sample inputs: a glob pattern matching
paired fastq files, or an on-file YAML configuration listing each sample's
files. Sample keys are derived here once and carried unchanged through
every stage.
"""
import collections
import glob
import os

import yaml

from varflow import utils
from varflow.log import logger

PAIR_FILE_IDENTIFIERS = set(["1", "2"])
SEPARATORS = ("R", "_", "-", ".")

class NoSamplesFound(ValueError):
    pass

def discover_samples(pattern):
    """Find paired fastq files matching a glob pattern.

    Returns (key, {"fastq1": ..., "fastq2": ...}) pairs sorted by key.
    """
    files = sorted(set(glob.glob(os.path.expanduser(pattern))))
    if not files:
        raise NoSamplesFound("No input files match %s" % pattern)
    samples = []
    for pair in combine_pairs(files):
        if len(pair) != 2:
            logger.warning("Skipping unpaired input file: %s" % ", ".join(pair))
            continue
        try:
            key = pair_key(pair)
        except ValueError as e:
            raise NoSamplesFound("Cannot name a sample from %s: %s" % (", ".join(pair), e)) from e
        samples.append((key, {"fastq1": os.path.abspath(pair[0]),
                              "fastq2": os.path.abspath(pair[1])}))
    if not samples:
        raise NoSamplesFound("No paired fastq files found for %s" % pattern)
    _check_for_duplicates([x[0] for x in samples])
    logger.info("Found %s samples matching %s" % (len(samples), pattern))
    return sorted(samples)

def samples_from_yaml(run_info_yaml):
    """Retrieve samples from a YAML file with `details` entries.

    Each entry needs a `description` and two `files`, relative paths are
    resolved against the YAML file's directory.
    """
    with open(run_info_yaml) as in_handle:
        details = (yaml.safe_load(in_handle) or {}).get("details", [])
    base_dir = os.path.dirname(os.path.abspath(run_info_yaml))
    samples = []
    for item in details:
        files = [utils.get_abspath(f, base_dir) for f in item.get("files", [])]
        if len(files) != 2:
            raise ValueError("Sample %s in %s needs two paired files, found %s" %
                             (item.get("description"), run_info_yaml, len(files)))
        samples.append((clean_key(item["description"]), {"fastq1": files[0], "fastq2": files[1]}))
    if not samples:
        raise NoSamplesFound("No samples specified in %s" % run_info_yaml)
    _check_for_duplicates([x[0] for x in samples])
    return sorted(samples)

def rstrip_extra(fname):
    """Strip extraneous, non-discriminative filename info from the end of a file.
    """
    to_strip = ("_R", ".R", "-R", "_", "fastq", ".", "-")
    while fname.endswith(to_strip):
        for x in to_strip:
            if fname.endswith(x):
                fname = fname[:len(fname) - len(x)]
                break
    return fname

def _stem(fname):
    return utils.splitext_plus(os.path.basename(fname))[0]

def dif(a, b):
    return [i for i in range(len(a)) if a[i] != b[i]]

def combine_pairs(input_files):
    """Call file pairs if they are the same except for one having _1 and the other _2.

    Returns a list of pairs or singles, with read 1 first in each pair.
    """
    pairs = []
    used = set([])
    for in_file in input_files:
        if in_file in used:
            continue
        matches = set([])
        for comp_file in input_files:
            if comp_file in used or comp_file == in_file:
                continue
            a = rstrip_extra(_stem(in_file))
            b = rstrip_extra(_stem(comp_file))
            if len(a) != len(b):
                continue
            s = dif(a, b)
            # no differences, then its the same file stem
            if len(s) == 0:
                raise ValueError("%s and %s have the same stem, so we don't know how to "
                                 "assign them to a sample. Rename one of the files." % (in_file, comp_file))
            if len(s) > 1:
                continue
            if a[s[0]] in PAIR_FILE_IDENTIFIERS and b[s[0]] in PAIR_FILE_IDENTIFIERS:
                # the 1/2 needs to be the last digit before a separator
                if len(b) > (s[0] + 1) and b[s[0] + 1] not in ("_", "-", "."):
                    continue
                if s[0] > 0 and b[s[0] - 1] in SEPARATORS:
                    matches.update([in_file, comp_file])
                    used.update([in_file, comp_file])
                    break
        if matches:
            pairs.append(sort_filenames(list(matches)))
        else:
            pairs.append([in_file])
            used.add(in_file)
    return pairs

def pair_key(pair):
    """Sample key shared by a pair of files: the stem before the read identifier.
    """
    a, b = [rstrip_extra(_stem(x)) for x in pair]
    s = dif(a, b)
    return clean_key(rstrip_extra(a[:s[0]]))

def sort_filenames(filenames):
    """
    sort a list of files by filename only, ignoring the directory names
    """
    return sorted(filenames, key=os.path.basename)

def clean_key(x):
    """Clean problem characters in sample keys used for directory names.

    Raises ValueError for keys that still cannot name a directory: empty, `.` or `..`.
    """
    orig = x
    x = str(x)
    for problem in [" ", "/", "\\", "[", "]", "&", ";", "#", "+", ":", ")", "("]:
        x = x.replace(problem, "_")
    if not utils.is_safe_dirname(x):
        raise ValueError("Invalid sample key %r: sample keys name per-sample directories" % (orig,))
    return x

def _check_for_duplicates(keys):
    """Identify and raise errors on duplicate sample keys.
    """
    dups = sorted(k for k, count in collections.Counter(keys).items() if count > 1)
    if dups:
        raise ValueError("Duplicate sample keys found in inputs. "
                         "Required to be unique for a run: %s" % ", ".join(dups))
