"""Combine tuples from several upstream channels by sample key.

Arrivals are assembled per key; a combined tuple is emitted as soon as every
upstream has contributed for that key and the partial record is discarded, so
only keys with incomplete joins hold artifacts in memory.

Keys still incomplete when all upstreams have closed are dropped without
error. This is the partial-join-drop policy: a sample that failed in one
upstream branch is expected to be missing there, and the failure itself is
already recorded by the stage that skipped it.

The keys of completed joins are kept, without their artifacts, so a late
repeat of a key that was already emitted is ignored instead of starting a new
partial record.
"""
import queue
import threading

import toolz as tz

from varflow.distributed.channel import END, make_tuple
from varflow.log import logger

class JoinRunner(object):
    def __init__(self, spec, inboxes, outbox):
        if len(inboxes) < 2:
            raise ValueError("Join %s needs at least two upstream channels" % spec.name)
        self.spec = spec
        self.inboxes = list(inboxes)
        self.outbox = outbox
        self.arity = len(self.inboxes)
        self.pending = {}
        self.dropped = []
        self._done = set([])
        self._arrivals = queue.Queue()
        self._threads = []

    @property
    def name(self):
        return self.spec.name

    def start(self):
        for i, inbox in enumerate(self.inboxes):
            t = threading.Thread(target=self._read, args=(i, inbox),
                                 name="join-%s-%s" % (self.name, i), daemon=True)
            self._threads.append(t)
        main = threading.Thread(target=self._assemble, name="join-%s" % self.name, daemon=True)
        self._threads.append(main)
        for t in self._threads:
            t.start()
        return self

    def join(self, timeout=None):
        for t in self._threads:
            t.join(timeout)

    def is_alive(self):
        return any(t.is_alive() for t in self._threads)

    def _read(self, i, inbox):
        while True:
            item = inbox.get()
            self._arrivals.put((i, item))
            if item is END:
                return

    def _assemble(self):
        open_inputs = self.arity
        try:
            while open_inputs > 0:
                i, item = self._arrivals.get()
                if item is END:
                    open_inputs -= 1
                    continue
                combined = self.add(i, item)
                if combined is not None:
                    self.outbox.send(combined)
            self._drop_pending()
        finally:
            self.outbox.close()

    def add(self, i, item):
        """Record the contribution of upstream i, returning the combined tuple once complete.
        """
        if item.key in self._done:
            logger.warning("Join %s: ignoring %s from %s, already joined" %
                           (self.name, item.key, self.inboxes[i].name))
            return None
        record = self.pending.setdefault(item.key, {})
        if i in record:
            logger.warning("Join %s: ignoring repeated arrival of %s from %s" %
                           (self.name, item.key, self.inboxes[i].name))
            return None
        record[i] = dict(item.artifacts)
        if len(record) < self.arity:
            return None
        del self.pending[item.key]
        self._done.add(item.key)
        return make_tuple(item.key, tz.merge(*[record[x] for x in range(self.arity)]))

    def _drop_pending(self):
        for key in sorted(self.pending):
            logger.debug("Join %s: dropping %s, only received from %s" %
                         (self.name, key, ", ".join(sorted(self.inboxes[x].name for x in self.pending[key]))))
            self.dropped.append(key)
        self.pending = {}
