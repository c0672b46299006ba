#!/usr/bin/env python3
"""
Command-line tool for tokenizing CDX files (including ones with unescaped
spaces in the redirect column) into JSON, either to stdout or into Kafka.
"""

import argparse
import os
import subprocess
import sys

import sentry_sdk

from cdxloader import (BlackholeSink, CdxJsonWorker, CdxLinePusher, KafkaSink,
                       MultiprocessWrapper, open_cdx_file)


def run_parse(args):
    sink = None
    if args.kafka_topic:
        sink = KafkaSink(
            kafka_hosts=args.kafka_hosts,
            produce_topic=args.kafka_topic,
        )
    if args.jobs > 1:
        # wrapped worker gets pickled into the pool, so it must not hold the sink
        worker = MultiprocessWrapper(CdxJsonWorker(), sink=sink, jobs=args.jobs)
        batch_size = args.batch_size or 1000
    else:
        worker = CdxJsonWorker(sink=sink)
        batch_size = args.batch_size
    with open_cdx_file(args.cdx_file) as cdx_file:
        pusher = CdxLinePusher(
            worker,
            cdx_file,
            filter_statuscodes=args.filter_statuscode,
            filter_mimetypes=args.filter_mimetype,
            batch_size=batch_size,
        )
        pusher.run()


def run_count(args):
    with open_cdx_file(args.cdx_file) as cdx_file:
        pusher = CdxLinePusher(BlackholeSink(), cdx_file)
        counts = pusher.run()
    for k, v in sorted(counts.items()):
        print("{}\t{}".format(k, v))


def main():
    parser = argparse.ArgumentParser(formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    parser.add_argument(
        "--enable-sentry",
        action="store_true",
        help="report exceptions to Sentry",
    )
    parser.add_argument(
        "--env", default="dev", help="environment name reported to Sentry (eg, prod, qa, dev)"
    )
    subparsers = parser.add_subparsers()

    sub_parse = subparsers.add_parser(
        "parse", help="tokenize a CDX file and emit one JSON object per record"
    )
    sub_parse.set_defaults(func=run_parse)
    sub_parse.add_argument(
        "cdx_file",
        help="CDX file to read from (or '-' for stdin; '.gz' files are decompressed)",
    )
    sub_parse.add_argument(
        "--batch-size", default=None, type=int, help="number of records to push per batch"
    )
    sub_parse.add_argument(
        "-j", "--jobs", default=1, type=int, help="parallelism for batch processing"
    )
    sub_parse.add_argument(
        "--filter-statuscode",
        action="append",
        help="only pass through records with this exact statuscode (may repeat)",
    )
    sub_parse.add_argument(
        "--filter-mimetype",
        action="append",
        help="only pass through records with this exact mimetype (may repeat)",
    )
    sub_parse.add_argument(
        "--kafka-hosts",
        default=os.environ.get("KAFKA_HOSTS") or "localhost:9092",
        help="list of Kafka brokers (host/port) to use",
    )
    sub_parse.add_argument(
        "--kafka-topic", default=None, help="produce JSON records to this Kafka topic"
    )

    sub_count = subparsers.add_parser(
        "count", help="tokenize a CDX file and only report line counts"
    )
    sub_count.set_defaults(func=run_count)
    sub_count.add_argument(
        "cdx_file",
        help="CDX file to read from (or '-' for stdin; '.gz' files are decompressed)",
    )

    args = parser.parse_args()
    if not args.__dict__.get("func"):
        parser.print_help(file=sys.stderr)
        sys.exit(-1)

    # configure sentry *after* parsing args
    if args.enable_sentry:
        try:
            GIT_REVISION = (
                subprocess.check_output(["git", "describe", "--always"]).strip().decode("utf-8")
            )
        except Exception:
            print("failed to configure git revision", file=sys.stderr)
            GIT_REVISION = None
        sentry_sdk.init(release=GIT_REVISION, environment=args.env, max_breadcrumbs=10)

    args.func(args)


if __name__ == "__main__":
    main()
