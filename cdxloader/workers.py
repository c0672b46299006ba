import json
import multiprocessing.pool
import sys
from collections import Counter
from typing import Any, Iterable, List, Optional, Sequence

from confluent_kafka import KafkaException, Producer

from .sources import iter_raw_lines
from .tokenizer import CdxRecord, CdxSkip, tokenize_raw_line


class CdxWorker(object):
    """
    Receives CdxRecords from a CdxLinePusher.

    process() turns one record into an output value; emit() hands that on to
    the sink, or prints it as a JSON line if there is no sink. A process()
    result of None is counted as failed and goes nowhere.
    """
    def __init__(self, sink: Optional[Any] = None):
        self.counts: Counter = Counter()
        self.sink = sink

    def push_record(self, record: CdxRecord) -> Any:
        self.counts['total'] += 1
        if not self.want(record):
            self.counts['skip-unwanted'] += 1
            return None
        return self.emit(self.process(record))

    def push_batch(self, records: List[CdxRecord]) -> List[Any]:
        return [self.push_record(r) for r in records]

    def emit(self, result: Any) -> Any:
        if result is None:
            self.counts['failed'] += 1
            return None
        if self.sink is not None:
            self.sink.push_record(result)
            self.counts['pushed'] += 1
        else:
            print(json.dumps(result))
            self.counts['printed'] += 1
        return result

    def finish(self) -> Counter:
        if self.sink is not None:
            self.sink.finish()
        print("{} counts: {}".format(type(self).__name__, self.counts), file=sys.stderr)
        return self.counts

    def want(self, record: CdxRecord) -> bool:
        return True

    def process(self, record: CdxRecord) -> Any:
        raise NotImplementedError("{} has no process()".format(type(self).__name__))


class CdxJsonWorker(CdxWorker):
    """
    Turns CdxRecords into plain dicts (field name to string, or None), ready
    for JSON serialization.
    """
    def process(self, record: CdxRecord) -> Any:
        if not isinstance(record, CdxRecord):
            raise TypeError("expected CdxRecord, got: {}".format(type(record)))
        return record.to_dict()


class MultiprocessWrapper(CdxWorker):
    """
    Runs the wrapped worker's process() over batches of records in a process
    pool; results are emitted from the parent, in input order.

    The wrapped worker is pickled into every pool process, so give it no sink.
    """
    def __init__(self,
                 worker: CdxWorker,
                 sink: Optional[Any] = None,
                 jobs: Optional[int] = None):
        super().__init__(sink=sink)
        self.worker = worker
        self.pool = multiprocessing.pool.Pool(jobs)

    def push_record(self, record: CdxRecord) -> Any:
        return self.push_batch([record])[0]

    def push_batch(self, records: List[CdxRecord]) -> List[Any]:
        self.counts['total'] += len(records)
        # memoryview fields can't cross process boundaries
        detached = [r.detach() for r in records]
        results = self.pool.map(self.worker.process, detached)
        self.counts['batches'] += 1
        return [self.emit(result) for result in results]

    def finish(self) -> Counter:
        self.pool.close()
        self.pool.join()
        return super().finish()


class BlackholeSink(object):
    """
    Swallows anything pushed into it, only counting. Useful for tests, and
    for runs which only care about the pusher's line counts.
    """
    def __init__(self):
        self.counts: Counter = Counter()

    def push_record(self, record: Any) -> None:
        self.counts['discarded'] += 1

    def push_batch(self, records: List[Any]) -> List[Any]:
        self.counts['discarded'] += len(records)
        return []

    def finish(self) -> Counter:
        return self.counts


class KafkaSink(object):
    """
    Produces every pushed record as a JSON message, keyed by urlkey. A
    delivery failure is fatal: the delivery callback raises.
    """
    def __init__(self, kafka_hosts: str, produce_topic: str):
        self.counts: Counter = Counter()
        self.produce_topic = produce_topic
        self.producer = Producer({
            'bootstrap.servers': kafka_hosts,
            'api.version.request': True,
            'delivery.report.only.error': True,
            'default.topic.config': {
                'message.timeout.ms': 30000,
                'request.required.acks': -1,  # all in-sync replicas
            },
        })

    @staticmethod
    def _on_delivery(err: Any, msg: Any) -> None:
        if err is not None:
            print("Kafka delivery failed, giving up: {}".format(err), file=sys.stderr)
            raise KafkaException(err)

    def push_record(self, record: Any) -> None:
        if isinstance(record, CdxRecord):
            record = record.to_dict()
        self.producer.produce(
            self.produce_topic,
            json.dumps(record).encode('utf-8'),
            key=record.get('urlkey'),
            on_delivery=self._on_delivery,
        )
        self.counts['produced'] += 1
        # serve delivery callbacks
        self.producer.poll(0)

    def push_batch(self, records: List[Any]) -> List[Any]:
        for r in records:
            self.push_record(r)
        return []

    def finish(self) -> Counter:
        self.producer.flush()
        print("Kafka produced to {}: {}".format(self.produce_topic, self.counts),
              file=sys.stderr)
        return self.counts


class CdxLinePusher(object):
    """
    Reads raw CDX lines from a binary file, tokenizes them, and pushes the
    resulting CdxRecords into a worker (or sink). Skipped lines and tokenizer
    anomalies are tallied in self.counts.

    Filters are exact byte matches against the statuscode and mimetype
    columns; column values are not otherwise interpreted. With a batch_size
    above 1, records are detached and pushed in batches.
    """
    def __init__(self,
                 worker: Any,
                 cdx_file: Iterable[bytes],
                 filter_statuscodes: Optional[Sequence[Any]] = None,
                 filter_mimetypes: Optional[Sequence[Any]] = None,
                 batch_size: Optional[int] = None):
        self.counts: Counter = Counter()
        self.worker = worker
        self.cdx_file = cdx_file
        self.filter_statuscodes = self._as_bytes(filter_statuscodes)
        self.filter_mimetypes = self._as_bytes(filter_mimetypes)
        self.batch_size = batch_size if batch_size and batch_size > 1 else None

    @staticmethod
    def _as_bytes(values: Optional[Sequence[Any]]) -> Optional[List[bytes]]:
        if not values:
            return None
        return [v.encode('utf-8') if isinstance(v, str) else bytes(v) for v in values]

    def wanted(self, record: CdxRecord) -> bool:
        if self.filter_statuscodes and record.statuscode not in self.filter_statuscodes:
            self.counts['skip-statuscode'] += 1
            return False
        if self.filter_mimetypes and record.mimetype not in self.filter_mimetypes:
            self.counts['skip-mimetype'] += 1
            return False
        return True

    def _push_batch(self, batch: List[CdxRecord]) -> None:
        self.worker.push_batch(batch)
        self.counts['pushed'] += len(batch)

    def run(self) -> Counter:
        batch: List[CdxRecord] = []
        for line in iter_raw_lines(self.cdx_file):
            self.counts['total'] += 1
            result = tokenize_raw_line(line, counts=self.counts)
            if isinstance(result, CdxSkip) or not self.wanted(result):
                continue
            if self.batch_size is None:
                self.worker.push_record(result)
                self.counts['pushed'] += 1
                continue
            batch.append(result.detach())
            if len(batch) >= self.batch_size:
                self._push_batch(batch)
                batch = []
        if batch:
            self._push_batch(batch)
        self.worker.finish()
        print("CDX lines pushed: {}".format(self.counts), file=sys.stderr)
        return self.counts
