"""Import a request captured from browser DevTools.

Accepts either "Copy as fetch" output::

    fetch("https://example.com/", {"headers": {"cookie": "a=1"}, "method": "GET"});

or "Copy as cURL (bash)" output::

    curl 'https://example.com/' -H 'cookie: a=1' --compressed
"""

import re
import shlex
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .cookies import Cookie
from .errors import CaptureParseError

FETCH_URL_RE = re.compile(r"fetch\s*\(\s*([\"'`])(.+?)\1")
FETCH_HEADERS_RE = re.compile(r"[\"']headers[\"']\s*:\s*\{([^}]*)\}", re.DOTALL)
FETCH_PAIR_RE = re.compile(r"\"([^\"]+)\"\s*:\s*\"((?:[^\"\\]|\\.)*)\"")
FETCH_METHOD_RE = re.compile(r"[\"']method[\"']\s*:\s*[\"']([A-Za-z]+)[\"']")
BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)
LINE_COMMENT_RE = re.compile(r"(?m)^\s*//.*$")

CURL_HEADER_FLAGS = {"-H", "--header"}
CURL_COOKIE_FLAGS = {"-b", "--cookie"}
CURL_METHOD_FLAGS = {"-X", "--request"}
CURL_DATA_FLAGS = {"-d", "--data", "--data-raw", "--data-binary", "--data-urlencode"}
CURL_VALUE_FLAGS = CURL_HEADER_FLAGS | CURL_COOKIE_FLAGS | CURL_METHOD_FLAGS | CURL_DATA_FLAGS | {
    "-A",
    "--user-agent",
    "-e",
    "--referer",
    "-u",
    "--user",
    "-x",
    "--proxy",
    "-o",
    "--output",
    "--url",
}


@dataclass
class CapturedRequest:
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: List[Cookie] = field(default_factory=list)
    method: str = "GET"
    body: Optional[str] = None


def split_cookie_header(value: str) -> List[Cookie]:
    cookies = []
    for pair in value.split(";"):
        name, sep, val = pair.strip().partition("=")
        if name and sep:
            cookies.append(Cookie(name=name.strip(), value=val.strip()))
    return cookies


def _add_header(req: CapturedRequest, key: str, value: str) -> None:
    if key.lower() == "cookie":
        req.cookies.extend(split_cookie_header(value))
    else:
        req.headers[key] = value


def parse_fetch(text: str) -> CapturedRequest:
    cleaned = LINE_COMMENT_RE.sub("", BLOCK_COMMENT_RE.sub("", text)).strip()
    m = FETCH_URL_RE.search(cleaned)
    if not m:
        raise CaptureParseError("could not parse URL from fetch request")
    req = CapturedRequest(url=m.group(2))
    hm = FETCH_HEADERS_RE.search(cleaned)
    if hm:
        for key, value in FETCH_PAIR_RE.findall(hm.group(1)):
            _add_header(req, key, value.replace('\\"', '"'))
    mm = FETCH_METHOD_RE.search(cleaned)
    if mm:
        req.method = mm.group(1).upper()
    return req


def parse_curl(text: str) -> CapturedRequest:
    # bash line continuations
    joined = re.sub(r"\\\r?\n", " ", text.strip())
    try:
        tokens = shlex.split(joined)
    except ValueError as e:
        raise CaptureParseError(f"could not tokenize curl command: {e}") from e
    if not tokens or tokens[0] != "curl":
        raise CaptureParseError("not a curl command")

    url = None
    headers: List[str] = []
    cookies: List[str] = []
    method = None
    body = None
    i = 1
    while i < len(tokens):
        tok = tokens[i]
        if tok in CURL_VALUE_FLAGS and i + 1 < len(tokens):
            val = tokens[i + 1]
            if tok in CURL_HEADER_FLAGS:
                headers.append(val)
            elif tok in CURL_COOKIE_FLAGS:
                cookies.append(val)
            elif tok in CURL_METHOD_FLAGS:
                method = val.upper()
            elif tok in CURL_DATA_FLAGS:
                body = val
            elif tok in {"-A", "--user-agent"}:
                headers.append(f"User-Agent: {val}")
            elif tok in {"-e", "--referer"}:
                headers.append(f"Referer: {val}")
            elif tok == "--url":
                url = val
            i += 2
            continue
        if not tok.startswith("-") and url is None:
            url = tok
        i += 1
    if not url:
        raise CaptureParseError("could not parse URL from curl command")

    req = CapturedRequest(url=url, body=body)
    req.method = method or ("POST" if body is not None else "GET")
    for h in headers:
        key, sep, value = h.partition(":")
        if sep:
            _add_header(req, key.strip(), value.strip())
    for c in cookies:
        req.cookies.extend(split_cookie_header(c))
    return req


def parse_captured_request(text: str) -> CapturedRequest:
    stripped = text.lstrip()
    if stripped.startswith("curl"):
        return parse_curl(stripped)
    return parse_fetch(text)
