import io
import gzip
import zlib
import logging
from typing import Optional

from cds_errors import DecompressionFailed, EmptyPayload, NotXml

logger = logging.getLogger(__name__)


def gunzip_xml(payload: bytes, path: Optional[str] = None) -> str:
    """
    Turn a gzip payload from the CDS into XML text.

    - empty buffer -> EmptyPayload
    - not gzip, truncated or corrupt stream -> DecompressionFailed
    - not UTF-8, or text not starting with '<' -> NotXml
    """
    if not payload:
        raise EmptyPayload(path)
    try:
        with gzip.GzipFile(fileobj=io.BytesIO(payload)) as gz:
            xml_bytes = gz.read()
    except (OSError, EOFError, zlib.error) as e:
        raise DecompressionFailed(str(e) or type(e).__name__, path=path) from e

    try:
        text = xml_bytes.decode("utf-8")
    except UnicodeDecodeError as e:
        raise NotXml(path) from e

    if not text.lstrip("\ufeff").strip().startswith("<"):
        raise NotXml(path)
    logger.debug(f"gunzipped {len(payload)} -> {len(xml_bytes)} bytes ({path or 'payload'})")
    return text
