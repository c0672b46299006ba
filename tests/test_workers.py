import json
from unittest import mock

import pytest
from confluent_kafka import KafkaException

from cdxloader import (BlackholeSink, CdxJsonWorker, KafkaSink, MultiprocessWrapper,
                       tokenize_cdx_line)

RAW = b"org,example)/old 20080101120000 http://example.org/old text/html 302 AAAAAAAAASIHDJIEP7ZW53DLRX5NFIJR http://example.org/new page.html - 512 1024 EXAMPLE-20080101000000-00001.arc.gz"


def test_json_worker_stdout(capsys):

    worker = CdxJsonWorker()
    result = worker.push_record(tokenize_cdx_line(RAW))
    assert result['redirect'] == "http://example.org/new page.html"
    assert result['metatags'] is None

    captured = capsys.readouterr()
    assert json.loads(captured.out) == result

    counts = worker.finish()
    assert counts['total'] == 1
    assert "CdxJsonWorker counts" in capsys.readouterr().err


def test_json_worker_kafka():

    with mock.patch('cdxloader.workers.Producer') as producer_class:
        sink = KafkaSink(kafka_hosts="localhost:9092", produce_topic="cdx-test")
        worker = CdxJsonWorker(sink=sink)
        worker.push_record(tokenize_cdx_line(RAW))
        worker.finish()

    producer = producer_class.return_value
    assert producer.produce.call_count == 1
    args, kwargs = producer.produce.call_args
    assert args[0] == "cdx-test"
    assert json.loads(args[1].decode('utf-8'))['offset'] == "1024"
    assert kwargs['key'] == "org,example)/old"
    producer.flush.assert_called_once_with()
    assert sink.counts['produced'] == 1
    assert worker.counts['pushed'] == 1


def test_kafka_fail_fast():

    KafkaSink._on_delivery(None, None)
    with pytest.raises(KafkaException):
        KafkaSink._on_delivery("broker down", None)


def test_multiprocess_wrapper(capsys):

    records = [tokenize_cdx_line(b"a%d b c d e f g h i j k" % i) for i in range(5)]
    wrapper = MultiprocessWrapper(CdxJsonWorker(), jobs=2)
    try:
        results = wrapper.push_batch(records)
    finally:
        counts = wrapper.finish()
    assert [r['urlkey'] for r in results] == ["a%d" % i for i in range(5)]
    assert counts['total'] == 5
    out_lines = capsys.readouterr().out.strip().split("\n")
    assert len(out_lines) == 5


def test_multiprocess_wrapper_single_record(capsys):

    wrapper = MultiprocessWrapper(CdxJsonWorker(), jobs=2)
    try:
        result = wrapper.push_record(tokenize_cdx_line(RAW))
    finally:
        counts = wrapper.finish()
    assert result['filename'] == "EXAMPLE-20080101000000-00001.arc.gz"
    assert counts['printed'] == 1


def test_json_worker_wrong_type():

    worker = CdxJsonWorker()
    with pytest.raises(TypeError):
        worker.process({'urlkey': "org,example)/old"})
    with pytest.raises(TypeError):
        worker.push_record(RAW)


def test_blackhole_sink():

    sink = BlackholeSink()
    sink.push_record(tokenize_cdx_line(RAW))
    sink.push_batch([None, None])
    assert sink.finish()['discarded'] == 3
