"""Transactional work areas so interrupted or failed work leaves nothing behind.

Tools write into a fresh temporary directory. Only when the wrapped block
finishes are the results moved into place, so a file or stage directory that
exists at its final location is always complete. Re-running a sample replaces
the previous outputs for that stage.
"""
import collections
import contextlib
import os
import shutil
import tempfile

import toolz as tz

from varflow import utils
from varflow.utils import flatten


DEFAULT_TMP = 'varflowtx'
FLAG_EXT = ".varflowtmp"

# index files travelling with their data file
INDEX_EXTS = collections.OrderedDict([
    (".bam", [".bai"]),
    (".vcf.gz", [".tbi", ".csi"]),
    (".fasta", [".fai"]),
])

StageArea = collections.namedtuple("StageArea", ["tx_dir", "final_dir"])


@contextlib.contextmanager
def tx_tmpdir(data=None, base_dir=None, remove=True):
    """Create a unique temporary directory, removing it when the block exits.

    The directory lives under the configured `resources: tmp: dir`, or under
    <base_dir>/varflowtx (base_dir defaults to the current directory). data is
    the system configuration, or a dictionary nesting it under `config`.
    """
    parent = utils.get_abspath(_get_base_tmpdir(data, base_dir or os.getcwd()))
    utils.safe_makedir(parent)
    tmp_dir = tempfile.mkdtemp(dir=parent)
    try:
        yield tmp_dir
    finally:
        if remove:
            utils.remove_safe(tmp_dir)


def _get_base_tmpdir(data, fallback_base_dir):
    for keys in [("config", "resources", "tmp", "dir"), ("resources", "tmp", "dir")]:
        configured = tz.get_in(keys, data)
        if configured:
            return configured
    return os.path.join(fallback_base_dir, DEFAULT_TMP)


@contextlib.contextmanager
def file_transaction(*data_and_files):
    """Yield temporary paths for output files, moving them into place on success.

    An optional configuration dictionary may come first. Yields a single path
    for a single output, otherwise a tuple in the order given. Outputs the
    block did not create are skipped.
    """
    with _flatten_plus_safe(data_and_files) as (tx_files, out_files):
        for tx_file in tx_files:
            utils.remove_safe(tx_file)
        yield tx_files[0] if len(tx_files) == 1 else tuple(tx_files)
        for tx_file, out_file in zip(tx_files, out_files):
            if os.path.exists(tx_file):
                _move_tmp_files(tx_file, out_file)


@contextlib.contextmanager
def stage_transaction(config, work_dir, stage, key):
    """Scoped work area for one stage processing one sample.

    Yields a StageArea: the task writes into `tx_dir`, which becomes
    `final_dir` (<work_dir>/<stage>/<key>) only if the block completes.
    """
    if not utils.is_safe_dirname(key):
        raise ValueError("Sample key %r cannot be used as a directory name" % (key,))
    final_dir = os.path.join(work_dir, stage, key)
    utils.remove_safe(final_dir)
    with tx_tmpdir(config, base_dir=work_dir) as tx_dir:
        yield StageArea(tx_dir, final_dir)
        _move_tmp_files(tx_dir, final_dir)


def remap_outputs(outputs, tx_dir, final_dir):
    """Point output paths inside a moved transactional directory at their final location.
    """
    prefix = tx_dir + os.sep
    out = {}
    for name, val in outputs.items():
        if utils.is_string(val) and (val == tx_dir or val.startswith(prefix)):
            val = final_dir + val[len(tx_dir):]
        out[name] = val
    return out


def _move_tmp_files(tx_path, final_path):
    utils.safe_makedir(os.path.dirname(final_path))
    # replacing a directory: moving onto an existing one would nest it
    if os.path.isdir(final_path) and os.path.isdir(tx_path):
        utils.remove_safe(final_path)
    _move_file_with_sizecheck(tx_path, final_path)
    for data_ext, index_exts in INDEX_EXTS.items():
        if tx_path.endswith(data_ext):
            for index_ext in index_exts:
                if os.path.exists(tx_path + index_ext):
                    _move_file_with_sizecheck(tx_path + index_ext, final_path + index_ext)


def _move_file_with_sizecheck(tx_file, final_file):
    """Move a file or directory into place, checking nothing was lost on the way.

    An empty <final_file>.varflowtmp flag marks a move in progress and is left
    behind if the sizes do not match.
    """
    flag_file = final_file + FLAG_EXT
    open(flag_file, 'wb').close()
    expected = utils.get_size(tx_file)
    shutil.move(tx_file, final_file)
    moved = utils.get_size(final_file)
    if expected != moved:
        raise IOError("Incomplete move of %s to %s: expected %s bytes, found %s" %
                      (tx_file, final_file, expected, moved))
    utils.remove_safe(flag_file)


@contextlib.contextmanager
def _flatten_plus_safe(data_and_files):
    """Pair each requested output file with a path in a fresh temporary directory.

    Without a configured tmp dir the temporary directory sits beside the first
    output so the final move stays on one filesystem.
    """
    data, out_files = _normalize_args(data_and_files)
    base_dir = os.path.dirname(os.path.abspath(out_files[0])) if out_files else None
    with tx_tmpdir(data, base_dir=base_dir) as tmp_dir:
        yield [os.path.join(tmp_dir, os.path.basename(f)) for f in out_files], out_files


def _normalize_args(data_and_files):
    if data_and_files and isinstance(data_and_files[0], dict):
        data, files = data_and_files[0], data_and_files[1:]
    else:
        data, files = None, data_and_files
    return data, [f for f in flatten(files) if f]
