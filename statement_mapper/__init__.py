"""
Statement Mapper: canonical figure extraction for audited financial PDFs.

Turns text-native or scanned financial statements into the ten canonical
figures through a degrading chain of extraction strategies (AI, parser,
synonym scan, raw lines), and learns label→field associations from
confirmed human corrections so the next document maps itself.

Every result carries a confidence band and a note naming the strategy
that produced it, so a reviewer always knows how far to trust it.
"""

__version__ = "1.0.0"

from statement_mapper.pipeline import FinancialExtractionPipeline  # noqa: F401
