"""Pytest fixtures and test helper functions"""
import os
import threading
import time

import pytest


class FakeTask(object):
    """Stand-in for an external tool: writes one file per declared output.

    Records calls and the number of simultaneous invocations, and fails for
    any key listed in `fail_keys`.
    """
    def __init__(self, outputs, fail_keys=(), delay=0, content=None, missing=()):
        self.outputs = list(outputs)
        self.fail_keys = set(fail_keys)
        self.missing = set(missing)
        self.delay = delay
        self.content = content
        self.calls = []
        self.intervals = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def __call__(self, ctx):
        start = time.time()
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.calls.append(ctx)
        try:
            if self.delay:
                time.sleep(self.delay)
            if ctx.key in self.fail_keys:
                raise RuntimeError("%s failed for %s" % (ctx.stage, ctx.key))
            out = {}
            for name in self.outputs:
                if name in self.missing:
                    continue
                fname = os.path.join(ctx.work_dir, "%s.%s" % (ctx.key, name))
                with open(fname, "w") as out_handle:
                    if self.content:
                        out_handle.write(self.content(ctx, name))
                    else:
                        out_handle.write("%s\t%s\n" % (ctx.key, name))
                out[name] = fname
            return out
        finally:
            with self._lock:
                self.active -= 1
                self.intervals.append((start, time.time()))

    def max_overlap(self):
        """Largest number of calls running at the same instant.
        """
        events = sorted([(s, 1) for s, _ in self.intervals] + [(e, -1) for _, e in self.intervals],
                        key=lambda x: (x[0], x[1]))
        cur = best = 0
        for _, change in events:
            cur += change
            best = max(best, cur)
        return best


@pytest.fixture
def fake_task():
    return FakeTask


@pytest.fixture
def work_dir(tmp_path):
    d = tmp_path / "work"
    d.mkdir()
    return str(d)


@pytest.fixture
def config(tmp_path):
    return {"resources": {"tmp": {"dir": str(tmp_path / "tx")}},
            "algorithm": {},
            "log_dir": str(tmp_path / "log")}


@pytest.fixture
def fastq_dir(tmp_path):
    """Paired fastq files for samples A, B and C."""
    d = tmp_path / "reads"
    d.mkdir()
    for key in ["A", "B", "C"]:
        for read in ["1", "2"]:
            (d / ("%s_R%s.fastq.gz" % (key, read))).write_text("@%s/%s\nACGT\n+\nIIII\n" % (key, read))
    return str(d)
