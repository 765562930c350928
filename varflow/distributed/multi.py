"""Run stage tasks in parallel on a single machine using multiple threads.

Each stage gets its own worker pool bounded by the stage's maximum
concurrency. External tools do the heavy lifting in subprocesses, so threads
only wait on them.
"""
import collections
import threading
from concurrent import futures

from varflow.distributed import transaction
from varflow.distributed.channel import make_tuple
from varflow.log import logger

TaskContext = collections.namedtuple("TaskContext", ["stage", "key", "inputs", "work_dir", "config"])
SampleTaskFailure = collections.namedtuple("SampleTaskFailure", ["stage", "key", "error"])

class MissingOutputsError(ValueError):
    pass

class MissingInputsError(ValueError):
    pass

class StageRunner(object):
    """Run one stage's task for every tuple arriving on its input.

    Failed samples are isolated: the failure is recorded in `failures` and
    the tuple is dropped from the output, while other samples carry on. The
    output channel is closed once the input is exhausted and every in-flight
    task has finished.
    """
    def __init__(self, spec, task, inbox, outbox, work_dir, config=None, abort=None,
                 max_concurrency=None):
        self.spec = spec
        self.task = task
        self.inbox = inbox
        self.outbox = outbox
        self.work_dir = work_dir
        self.config = config or {}
        self.abort = abort
        self.max_concurrency = max(1, int(max_concurrency or spec.max_concurrency))
        self.failures = []
        self.completed = []
        self.skipped = []
        self._lock = threading.Lock()
        self._slots = threading.BoundedSemaphore(self.max_concurrency)
        self._thread = None

    @property
    def name(self):
        return self.spec.name

    def start(self):
        self._thread = threading.Thread(target=self._dispatch, name="stage-%s" % self.name,
                                        daemon=True)
        self._thread.start()
        return self

    def join(self, timeout=None):
        if self._thread is not None:
            self._thread.join(timeout)

    def is_alive(self):
        return self._thread is not None and self._thread.is_alive()

    def _aborted(self):
        return self.abort is not None and self.abort.is_set()

    def _dispatch(self):
        logger.debug("Stage %s: starting with %s concurrent tasks" % (self.name, self.max_concurrency))
        try:
            with futures.ThreadPoolExecutor(max_workers=self.max_concurrency,
                                            thread_name_prefix="stage-%s" % self.name) as pool:
                for item in self.inbox:
                    if self._aborted():
                        self.skipped.append(item.key)
                        continue
                    self._slots.acquire()
                    if self._aborted():
                        self._slots.release()
                        self.skipped.append(item.key)
                        continue
                    pool.submit(self._run_one, item)
        finally:
            self.outbox.close()
            if self.skipped:
                logger.info("Stage %s: aborted, skipped %s samples" % (self.name, len(self.skipped)))
            logger.debug("Stage %s: finished, %s completed, %s failed" %
                         (self.name, len(self.completed), len(self.failures)))

    def _run_one(self, item):
        try:
            outputs = self.run_task(item)
        except Exception as e:
            failure = SampleTaskFailure(self.name, item.key, "%s: %s" % (type(e).__name__, e))
            with self._lock:
                self.failures.append(failure)
            logger.warning("Stage %s failed for sample %s, skipping downstream processing: %s" %
                           (self.name, item.key, failure.error), exc_info=True)
        else:
            with self._lock:
                self.completed.append(item.key)
            self.outbox.send(make_tuple(item.key, outputs))
        finally:
            self._slots.release()

    def run_task(self, item):
        """Run the stage task for a single tuple inside a scoped work area.

        Returns the declared outputs, pointing at their final location.
        """
        missing = [x for x in self.spec.inputs if item.artifacts.get(x) is None]
        if missing:
            raise MissingInputsError("Missing inputs for %s: %s" % (self.name, ", ".join(missing)))
        with transaction.stage_transaction(self.config, self.work_dir, self.name, item.key) as area:
            ctx = TaskContext(self.name, item.key, dict(item.artifacts), area.tx_dir, self.config)
            outputs = self.task(ctx) or {}
            missing = [x for x in self.spec.outputs if outputs.get(x) is None]
            if missing:
                raise MissingOutputsError("Task did not produce %s" % ", ".join(missing))
            outputs = {x: outputs[x] for x in self.spec.outputs}
        return transaction.remap_outputs(outputs, area.tx_dir, area.final_dir)
