"""
Table loaders: every variant returns the raw replicate table as a DataFrame.

Loading happens before the fitting pipeline runs; nothing here knows about
models or trimming.
"""
import io
import logging
import os
from abc import ABC, abstractmethod

import pandas as pd
import requests

from .errors import DataShapeError

logger = logging.getLogger(__name__)

def _read_guess_sep(text):
    sample = text[:2000]
    if "\t" in sample: return "\t"
    if ";" in sample: return ";"
    return ","

def read_table_text(text: str, source: str = None) -> pd.DataFrame:
    try:
        frame = pd.read_csv(io.StringIO(text), sep=_read_guess_sep(text))
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise DataShapeError(f"Unreadable table: {exc}", source=source) from exc
    # minimal normalization
    frame.columns = [str(c).strip() for c in frame.columns]
    return frame

def read_table_bytes(raw: bytes, source: str = None, encoding="utf-8") -> pd.DataFrame:
    try:
        text = raw.decode(encoding)
    except UnicodeDecodeError as exc:
        raise DataShapeError(f"Table is not valid {encoding} text: {exc}", source=source) from exc
    return read_table_text(text, source=source)

class TableLoader(ABC):
    """Produces a raw replicate table (column 0 = concentration, columns 1..N = replicates)."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def load(self) -> pd.DataFrame:
        ...

class LocalFileLoader(TableLoader):
    def __init__(self, path):
        self.path = os.fspath(path)

    @property
    def name(self):
        return os.path.basename(self.path)

    def load(self):
        try:
            with open(self.path, "rb") as fh:
                raw = fh.read()
        except OSError as exc:
            raise DataShapeError(f"Cannot read file: {exc}", source=self.name) from exc
        frame = read_table_bytes(raw, source=self.name)
        logger.debug("Loaded %s: %d rows x %d columns", self.path, *frame.shape)
        return frame

class RemoteURLLoader(TableLoader):
    def __init__(self, url, timeout=30):
        self.url = url
        self.timeout = timeout

    @property
    def name(self):
        return self.url.rstrip("/").rsplit("/", 1)[-1] or self.url

    def load(self):
        try:
            r = requests.get(self.url, timeout=self.timeout)
            r.raise_for_status()
        except requests.RequestException as exc:
            raise DataShapeError(f"Download failed: {exc}", source=self.url) from exc
        frame = read_table_text(r.text, source=self.name)
        logger.debug("Downloaded %s: %d rows x %d columns", self.url, *frame.shape)
        return frame

class InMemoryTableLoader(TableLoader):
    def __init__(self, frame: pd.DataFrame, name="table"):
        self.frame = frame
        self._name = name

    @property
    def name(self):
        return self._name

    def load(self):
        return self.frame.copy()

def loader_for(source) -> TableLoader:
    """Pick a loader from the kind of `source`: DataFrame, http(s) URL or file path."""
    if isinstance(source, TableLoader):
        return source
    if isinstance(source, pd.DataFrame):
        return InMemoryTableLoader(source)
    text = os.fspath(source)
    if text.startswith(("http://", "https://")):
        return RemoteURLLoader(text)
    return LocalFileLoader(text)
