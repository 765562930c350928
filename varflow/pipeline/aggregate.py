"""Collect per-sample records into single batch level output files.

Records arrive in whatever order samples finish. They are buffered until the
contributing stage has closed its output, then written sorted by sample key
with a single header line, so repeated runs produce identical files.
"""
import threading

from varflow.distributed.transaction import file_transaction
from varflow.log import logger

class AggregateWriteFailure(IOError):
    pass

def _split_header(record, has_header):
    lines = record.splitlines(True)
    if has_header and lines:
        return lines[0], lines[1:]
    return None, lines

def _ensure_newline(lines):
    if lines and not lines[-1].endswith("\n"):
        lines = lines[:-1] + [lines[-1] + "\n"]
    return lines

class AggregateSink(object):
    """Buffer records by sample key and write them out as one sorted file.
    """
    def __init__(self, name, out_file, has_header=False, config=None):
        self.name = name
        self.out_file = out_file
        self.has_header = has_header
        self.config = config or {}
        self.error = None
        self.written = None
        self._records = {}
        self._lock = threading.Lock()
        self._thread = None

    @property
    def keys(self):
        with self._lock:
            return sorted(self._records)

    def collect(self, key, record, has_header=None):
        """Add the record for one sample, replacing any earlier record for the same key.
        """
        has_header = self.has_header if has_header is None else has_header
        header, body = _split_header(record, has_header)
        with self._lock:
            if key in self._records:
                logger.warning("Aggregate %s: replacing duplicate record for %s" % (self.name, key))
            self._records[key] = (header, _ensure_newline(body))

    def finish(self):
        """Write buffered records sorted by key, returning the output file.

        Returns None without creating a file if nothing was collected.
        """
        with self._lock:
            records = dict(self._records)
        if not records:
            logger.info("Aggregate %s: no samples to write" % self.name)
            return None
        keys = sorted(records)
        headers = [(k, records[k][0]) for k in keys if records[k][0] is not None]
        header = headers[0][1] if headers else None
        for key, other in headers[1:]:
            if other != header:
                logger.warning("Aggregate %s: header for %s differs from %s, keeping the first" %
                               (self.name, key, headers[0][0]))
        try:
            with file_transaction(self.config, self.out_file) as tx_out_file:
                with open(tx_out_file, "w", encoding="utf-8") as out_handle:
                    if header is not None:
                        out_handle.write(_ensure_newline([header])[0])
                    for key in keys:
                        out_handle.writelines(records[key][1])
        except (IOError, OSError) as e:
            raise AggregateWriteFailure("Could not write aggregate %s to %s: %s" %
                                        (self.name, self.out_file, e)) from e
        logger.info("Aggregate %s: wrote %s samples to %s" % (self.name, len(keys), self.out_file))
        self.written = self.out_file
        return self.out_file

    def start(self, inbox, artifact):
        """Consume tuples from a channel subscription, writing the file when it closes.
        """
        self._thread = threading.Thread(target=self._consume, args=(inbox, artifact),
                                        name="aggregate-%s" % self.name, daemon=True)
        self._thread.start()
        return self

    def join(self, timeout=None):
        if self._thread is not None:
            self._thread.join(timeout)

    def is_alive(self):
        return self._thread is not None and self._thread.is_alive()

    def _consume(self, inbox, artifact):
        try:
            for item in inbox:
                record = self._read_record(item, artifact)
                if record is not None:
                    self.collect(item.key, record)
        except Exception as e:
            logger.exception("Aggregate %s: stopped collecting records" % self.name)
            self.error = AggregateWriteFailure("Aggregate %s stopped collecting records: %s" %
                                               (self.name, e))
        try:
            self.finish()
        except AggregateWriteFailure as e:
            logger.error(str(e))
            self.error = self.error or e
        except Exception as e:
            logger.exception("Aggregate %s: could not write %s" % (self.name, self.out_file))
            self.error = self.error or AggregateWriteFailure("Could not write aggregate %s to %s: %s" %
                                                             (self.name, self.out_file, e))

    def _read_record(self, item, artifact):
        try:
            with open(item.artifacts[artifact], encoding="utf-8") as in_handle:
                return in_handle.read()
        except (IOError, OSError, KeyError, ValueError) as e:
            logger.warning("Aggregate %s: could not read %s record for %s: %s" %
                           (self.name, artifact, item.key, e))
            return None
