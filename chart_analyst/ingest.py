"""
CSV -> TabularData.

Rationale:
- pandas does the parsing and type inference; this module only caps the row
  count and turns the DataFrame into plain header-keyed rows.
- Missing cells become None, numpy scalars become native Python values, so the
  rows are JSON-serialisable for the prompt.
"""

import logging
import math
from typing import IO, Any, List, Union

import numpy as np
import pandas as pd

from .schemas import Row

logger = logging.getLogger(__name__)

ALLOWED_FILE_TYPES = (".csv",)


def is_allowed_filename(filename: str) -> bool:
    return bool(filename) and filename.lower().endswith(ALLOWED_FILE_TYPES)


def load_csv(source: Union[str, IO[Any]], row_limit: int) -> pd.DataFrame:
    """Load a CSV into a DataFrame with row limit. Blank lines are skipped."""
    df = pd.read_csv(source, skip_blank_lines=True)
    df.columns = [str(c).strip() for c in df.columns]
    if row_limit > 0 and len(df) > row_limit:
        logger.info("ingest.truncated rows=%d limit=%d", len(df), row_limit)
        df = df.head(row_limit)
    return df


def _native(value: Any) -> Any:
    """Convert pandas/numpy cell values to native Python types."""
    if value is None:
        return None
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and math.isnan(value):
        return None
    if value is pd.NaT:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def dataframe_to_rows(df: pd.DataFrame) -> List[Row]:
    columns = [str(c) for c in df.columns]
    return [
        {col: _native(v) for col, v in zip(columns, record)}
        for record in df.itertuples(index=False, name=None)
    ]
