"""Filesystem helpers shared by stages, transactions and sinks.
"""
import os
import shutil
import time

COMPRESSED_EXTS = (".gz", ".bz2", ".zip")

def safe_makedir(dname, retries=5, wait=2):
    """Create a directory and its parents if missing, returning it.

    Worker threads for different samples create sibling directories at the same
    time, so transient OSErrors are retried.
    """
    if not dname:
        return dname
    for attempt in range(retries + 1):
        if os.path.exists(dname):
            break
        try:
            os.makedirs(dname)
        except OSError:
            if attempt == retries:
                raise
            time.sleep(wait)
    return dname

def file_exists(fname):
    """True if fname is an existing, non-empty file.
    """
    try:
        return bool(fname) and os.path.getsize(fname) > 0
    except OSError:
        return False

def get_size(path):
    """Size of a file in bytes, or the total of all files below a directory.
    """
    if not os.path.isdir(path):
        return os.path.getsize(path)
    total = 0
    for root, _, files in os.walk(path):
        total += sum(os.path.getsize(os.path.join(root, f)) for f in files)
    return total

def splitext_plus(fname):
    """Split off the extension, keeping compression suffixes with it: a.fastq.gz -> (a, .fastq.gz)
    """
    base, ext = os.path.splitext(fname)
    if ext in COMPRESSED_EXTS:
        base, inner = os.path.splitext(base)
        ext = inner + ext
    return base, ext

def remove_safe(path):
    """Remove a file or directory tree, ignoring paths that are already gone.
    """
    try:
        if os.path.isdir(path):
            shutil.rmtree(path)
        else:
            os.remove(path)
    except OSError:
        pass

def get_abspath(path, pardir=None):
    """Absolute, normalized path with environment variables expanded, relative to pardir.
    """
    return os.path.normpath(os.path.join(pardir or os.getcwd(), os.path.expandvars(path)))

def is_string(arg):
    return isinstance(arg, str)

def is_safe_dirname(name):
    """True if name can be used as a single directory below another one.

    Rejects empty names, `.`, `..` and anything containing a path separator.
    """
    if not is_string(name) or name in ("", os.curdir, os.pardir):
        return False
    return not any(sep and sep in name for sep in (os.sep, os.altsep))

def flatten(xs):
    """Flatten nested lists and tuples into a single stream of items.
    """
    for x in xs:
        if isinstance(x, (list, tuple)):
            for sub in flatten(x):
                yield sub
        else:
            yield x
