"""Streams of per-sample tuples connecting pipeline stages.

A Channel delivers every sent tuple to each of its subscribers, giving tee
semantics for free: a stage feeding both a later stage and an aggregate simply
has two subscriptions. Subscribers must be registered before the first send,
which the pipeline graph does when it wires a run.
"""
import collections
import queue
import threading

SampleTuple = collections.namedtuple("SampleTuple", ["key", "artifacts"])

class _EndOfStream(object):
    def __repr__(self):
        return "END"

END = _EndOfStream()

class ChannelError(RuntimeError):
    pass

class ChannelClosedError(ChannelError):
    """Raised when sending on a channel that was already closed.
    """
    pass

def make_tuple(key, artifacts):
    """Build a tuple for handoff, copying artifacts so the sender keeps no reference.
    """
    return SampleTuple(key, dict(artifacts))

class Subscription(object):
    """A single consumer's view of a Channel.
    """
    def __init__(self, channel_name):
        self.name = channel_name
        self._queue = queue.Queue()

    def _put(self, item):
        self._queue.put(item)

    def get(self):
        """Block until the next tuple arrives, returning END once the channel is closed.
        """
        return self._queue.get()

    def __iter__(self):
        while True:
            item = self.get()
            if item is END:
                return
            yield item

class Channel(object):
    """Multi-consumer stream of SampleTuples.

    No ordering is guaranteed beyond delivering every tuple the producer sent.
    """
    def __init__(self, name):
        self.name = name
        self._subscribers = []
        self._lock = threading.Lock()
        self._started = False
        self._closed = False
        self.sent = 0

    @property
    def closed(self):
        return self._closed

    def subscribe(self):
        with self._lock:
            if self._started or self._closed:
                raise ChannelError("Cannot subscribe to channel %s after it started sending" % self.name)
            sub = Subscription(self.name)
            self._subscribers.append(sub)
            return sub

    def send(self, item):
        if not isinstance(item, SampleTuple):
            item = SampleTuple(*item)
        with self._lock:
            if self._closed:
                raise ChannelClosedError("Send on closed channel %s: %s" % (self.name, item.key))
            self._started = True
            self.sent += 1
            for sub in self._subscribers:
                sub._put(make_tuple(item.key, item.artifacts))

    def close(self):
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for sub in self._subscribers:
                sub._put(END)

def tee(channel, n):
    """Fan out a channel into n independent subscriptions.
    """
    return [channel.subscribe() for _ in range(n)]
