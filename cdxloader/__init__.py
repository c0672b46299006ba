from .sources import iter_raw_lines, open_cdx_file
from .tokenizer import (CDX_FIELDS, CdxRecord, CdxSkip, RawLine, tokenize_cdx_line,
                        tokenize_raw_line)
from .workers import (BlackholeSink, CdxJsonWorker, CdxLinePusher, CdxWorker, KafkaSink,
                      MultiprocessWrapper)
