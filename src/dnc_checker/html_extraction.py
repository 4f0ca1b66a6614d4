"""
DOM queries against registry portal pages.

Every structural assumption about the portal markup lives here as a named
constant, so a portal redesign is a one-module change. Parsing uses
BeautifulSoup with the stdlib HTML parser for pages and lxml for the
XML form descriptors the portal embeds.
"""

import re
from typing import Optional
from urllib.parse import parse_qs, urlparse

from bs4 import BeautifulSoup, Tag

from .enums import StructureErrorCode
from .exceptions import ProtocolStructureError


# document.getElementById("workArea").src = "<url>"
WORK_AREA_PATTERN = re.compile(
    r"""document\.getElementById\(["']workArea["']\)\.src\s*=\s*["']([^"']+)["']"""
)

RESULT_FIELD_NAME = "RAF_RESPUESTA_STR"
RESULT_FIELD_TAG = "field"
RESULT_FIELD_ATTRIBUTE = "attName"
FORM_CONTAINER_CLASS = "formContainer"
FORM_CONTAINER_XML_ATTRIBUTE = "data-xml"

REGISTERED_PHRASE = "se encuentra en el Registro No llame"

TAB_ID_PARAM = "tabId"
TOKEN_ID_PARAM = "tokenId"


def find_iframe_sources(html: str) -> list[str]:
    """Return the src of every iframe on a page, in document order."""
    soup = BeautifulSoup(html, "html.parser")
    return [
        iframe["src"].strip()
        for iframe in soup.find_all("iframe")
        if iframe.get("src") and iframe["src"].strip()
    ]


def require_iframe_source(html: str) -> str:
    """First iframe src, or ProtocolStructureError(frame_not_found)."""
    sources = find_iframe_sources(html)
    if not sources:
        raise ProtocolStructureError(
            code=StructureErrorCode.FRAME_NOT_FOUND.value,
            message="Portal page contains no iframe",
            details={"body_length": len(html)},
        )
    return sources[0]


def resolve_url(raw_url: str, origin: str) -> str:
    """
    Resolve a work-area reference against the portal origin.

    Absolute URLs pass through unchanged; root-relative and bare relative
    references are both joined to the origin root.
    """
    if raw_url.startswith("http://") or raw_url.startswith("https://"):
        return raw_url
    origin = origin.rstrip("/")
    if raw_url.startswith("/"):
        return origin + raw_url
    return f"{origin}/{raw_url}"


def extract_work_area_url(html: str, origin: str) -> Optional[str]:
    """Find the workArea src assignment in an iframe page script."""
    match = WORK_AREA_PATTERN.search(html)
    if not match:
        return None
    return resolve_url(match.group(1), origin)


def require_work_area_url(html: str, origin: str) -> str:
    url = extract_work_area_url(html, origin)
    if url is None:
        raise ProtocolStructureError(
            code=StructureErrorCode.CODE_NOT_FOUND.value,
            message="No workArea URL assignment found in iframe script",
            details={"body_length": len(html)},
        )
    return url


def parse_session_tokens(url: str) -> tuple[Optional[str], Optional[str]]:
    """
    Read the tabId and tokenId query parameters of a work-area URL.

    Returns:
        Tuple of (tab_id, token_id); either may be None
    """
    query = parse_qs(urlparse(url).query, keep_blank_values=False)
    tab_id = query.get(TAB_ID_PARAM, [None])[0]
    token_id = query.get(TOKEN_ID_PARAM, [None])[0]
    return tab_id, token_id


def require_session_tokens(url: str) -> tuple[str, str]:
    tab_id, token_id = parse_session_tokens(url)
    if not tab_id or not token_id:
        raise ProtocolStructureError(
            code=StructureErrorCode.TOKENS_NOT_FOUND.value,
            message="Work-area URL lacks tabId or tokenId",
            details={"has_tab_id": bool(tab_id), "has_token_id": bool(token_id)},
        )
    return tab_id, token_id


def _is_result_field(tag: Tag) -> bool:
    # html.parser lowercases attribute names, the XML parser keeps them
    if not tag.name or tag.name.lower() != RESULT_FIELD_TAG:
        return False
    for name, value in tag.attrs.items():
        if name.lower() == RESULT_FIELD_ATTRIBUTE.lower() and value == RESULT_FIELD_NAME:
            return True
    return False


def _result_field_value(soup: BeautifulSoup) -> Optional[str]:
    field = soup.find(_is_result_field)
    if field is None:
        return None
    text = field.get_text().strip()
    if text:
        return text
    value = field.get("value")
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _form_container_xml(soup: BeautifulSoup) -> Optional[str]:
    container = soup.find(class_=FORM_CONTAINER_CLASS)
    if container is None:
        return None
    data_xml = container.get(FORM_CONTAINER_XML_ATTRIBUTE)
    return data_xml if isinstance(data_xml, str) and data_xml else None


def extract_result_field(body: str) -> Optional[str]:
    """
    Extract the RAF_RESPUESTA_STR value from a next-step response.

    Sources are tried in order and the first non-empty value wins:
    the HTML body, the form container's embedded XML descriptor, and the
    whole body re-read as XML.
    """
    if not body:
        return None

    soup = BeautifulSoup(body, "html.parser")
    value = _result_field_value(soup)
    if value:
        return value

    data_xml = _form_container_xml(soup)
    if data_xml:
        value = _result_field_value(BeautifulSoup(data_xml, "xml"))
        if value:
            return value

    return _result_field_value(BeautifulSoup(body, "xml"))


def is_registered(response_text: str) -> bool:
    """A number is registered iff the result text contains the registry phrase."""
    return REGISTERED_PHRASE in (response_text or "")
