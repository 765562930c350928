"""Run the external tools behind each stage, logging commands and their output.

Every command line goes to the commands log. Tool output is written to the
debug log as it streams, and the last lines are kept for the error raised
when a tool exits with a non-zero status.
"""
import collections
import os
import shutil
import subprocess

from varflow import utils
from varflow.log import logger, logger_cl, logger_stdout

ERROR_CONTEXT_LINES = 100

def run(cmd, descr=None, key=None, checks=None, log_error=True,
        log_stdout=False, env=None):
    """Run a command for a sample, raising if it fails or its outputs are not there.

    cmd is either a list of arguments or a shell string; strings with pipes
    run through bash with pipefail so failures early in a pipe are caught.
    checks are callables run afterwards, any returning False raises IOError.
    """
    descr = _descr_str(descr, key) if descr else None
    if descr:
        logger.debug(descr)
    try:
        args, shell, executable = _prepare_cmd(cmd)
        logger_cl.debug(args if shell else " ".join(args))
        _run_and_log(args, shell, executable, logger_stdout if log_stdout else logger, env)
        failed = [check for check in (checks or []) if not check()]
        if failed:
            raise IOError("External command finished but output checks failed%s" %
                          (": %s" % descr if descr else ""))
    except Exception:
        if log_error:
            logger.exception("Command failed%s" % (": %s" % descr if descr else ""))
        raise

def _descr_str(descr, key):
    if key:
        return "%s : %s" % (descr, key)
    return descr

def find_bash():
    for bash in [shutil.which("bash"), "/bin/bash", "/usr/bin/bash", "/usr/local/bin/bash"]:
        if bash and os.path.exists(bash):
            return bash
    raise IOError("Could not find bash in any standard location. Needed for unix pipes")

def _prepare_cmd(cmd):
    """Return arguments, shell flag and shell executable for subprocess.
    """
    if not isinstance(cmd, str):
        return [str(x) for x in cmd], False, None
    if " | " in cmd or "<(" in cmd or ">(" in cmd:
        return "set -o pipefail; " + cmd, True, find_bash()
    return cmd, True, None

def _run_and_log(args, shell, executable, out_logger, env=None):
    tail = collections.deque(maxlen=ERROR_CONTEXT_LINES)
    proc = subprocess.Popen(args, shell=shell, executable=executable, stdout=subprocess.PIPE,
                            stderr=subprocess.STDOUT, close_fds=True, env=env)
    with proc.stdout:
        for raw in proc.stdout:
            line = raw.decode("utf-8", errors="replace").rstrip()
            if line:
                tail.append(line)
                out_logger.debug(line)
    retcode = proc.wait()
    if retcode != 0:
        raise subprocess.CalledProcessError(retcode, args, output="\n".join(tail))

# ## Output checks

def file_nonempty(target_file):
    def check():
        ok = utils.file_exists(target_file)
        if not ok:
            logger.info("Did not find non-empty output file %s" % target_file)
        return ok
    return check

def file_exists(target_file):
    def check():
        ok = os.path.exists(target_file)
        if not ok:
            logger.info("Did not find output file %s" % target_file)
        return ok
    return check
