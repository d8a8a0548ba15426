from __future__ import annotations

import base64
import logging
import re
import shlex
from typing import List, Optional, Tuple
from urllib.parse import quote, urlsplit, urlunsplit

from restfile.errors import Diagnostic, RequestSyntaxError, UnrecognizedCurlFlag
from restfile.parsing.models import FileBody, FormField, Headers, MultipartBody, ParseResult, RequestDescriptor
from restfile.variables.scanner import scan

log = logging.getLogger(__name__)


# ----------------------------
# Flag tables
# ----------------------------

_METHOD_FLAGS = ("-X", "--request")
_HEADER_FLAGS = ("-H", "--header")
_DATA_FLAGS = ("-d", "--data", "--data-raw", "--data-binary", "--data-ascii")
_URLENCODE_FLAGS = ("--data-urlencode",)
_USER_FLAGS = ("-u", "--user")
_COOKIE_FLAGS = ("-b", "--cookie")
_FORM_FLAGS = ("-F", "--form", "--form-string")
_USER_AGENT_FLAGS = ("-A", "--user-agent")
_REFERER_FLAGS = ("-e", "--referer")
_URL_FLAGS = ("--url",)

# Take a value we have no use for; consumed silently so it is not mistaken for the URL.
_IGNORED_VALUE_FLAGS = frozenset({
    "-m", "--max-time", "--connect-timeout", "-o", "--output", "--retry",
    "--retry-delay", "--retry-max-time", "-x", "--proxy", "--cacert", "--cert",
    "--key", "-c", "--cookie-jar", "--limit-rate", "-w", "--write-out",
    "--resolve", "--interface", "-T", "--upload-file",
})

# Flags without a value that we know about but do not act on.
_IGNORED_SWITCHES = frozenset({
    "-s", "--silent", "-S", "--show-error", "-v", "--verbose", "-i", "--include",
    "-f", "--fail", "--http1.1", "--http2", "-#", "--progress-bar", "-N", "--no-buffer",
})

_VALUE_FLAGS = frozenset(
    _METHOD_FLAGS + _HEADER_FLAGS + _DATA_FLAGS + _URLENCODE_FLAGS + _USER_FLAGS + _COOKIE_FLAGS
    + _FORM_FLAGS + _USER_AGENT_FLAGS + _REFERER_FLAGS + _URL_FLAGS
) | _IGNORED_VALUE_FLAGS

_SHORT_VALUE_FLAGS = frozenset(f for f in _VALUE_FLAGS if len(f) == 2 and f[1] != "-")
_SHORT_SWITCHES = frozenset({"-G", "-L", "-k", "-I"}) | frozenset(
    f for f in _IGNORED_SWITCHES if len(f) == 2
)

_LINE_CONTINUATION_RE = re.compile(r"\\\r?\n")
_CURL_RE = re.compile(r"^\s*curl(?:\s|$)", re.IGNORECASE)


# ----------------------------
# Helpers
# ----------------------------

_DOLLAR_ENV_RE = re.compile(r"(?<!\\)\$(\{)?([A-Za-z_][A-Za-z0-9_]*)\}?")


def _convert_shell_env_to_placeholder(s: str) -> str:
    """
    Converts $VARNAME or ${VARNAME} to {{$processEnv VARNAME}}.
    Leaves escaped dollars intact: "\\$FOO" stays "$FOO".
    """
    sentinel = "__RESTFILE_ESCAPED_DOLLAR__"
    s = s.replace("\\$", sentinel)
    s = _DOLLAR_ENV_RE.sub(lambda m: f"{{{{$processEnv {m.group(2)}}}}}", s)
    return s.replace(sentinel, "$")


def _parse_header_kv(h: str) -> Tuple[str, str]:
    # Header format: "Key: Value"
    if ":" not in h:
        return h.strip(), ""
    k, v = h.split(":", 1)
    return k.strip(), v.strip()


def basic_auth_value(userpass: str) -> str:
    """
    `Authorization` value for curl's -u user:pass.

    Credentials that still hold placeholders are left as `Basic user:pass`;
    the resolver encodes them once the placeholders are filled in.
    """
    if "{{" in userpass:
        return f"Basic {userpass}"
    return "Basic " + base64.b64encode(userpass.encode("utf-8")).decode("ascii")


def _append_query(url: str, query: str) -> str:
    parts = urlsplit(url)
    merged = f"{parts.query}&{query}" if parts.query else query
    return urlunsplit((parts.scheme, parts.netloc, parts.path, merged, parts.fragment))


def _tokenize(curl_text: str) -> List[str]:
    text = _LINE_CONTINUATION_RE.sub(" ", curl_text)
    try:
        return shlex.split(text, comments=False, posix=True)
    except ValueError as e:
        # shlex reports "No closing quotation" / "No escaped character"
        raise RequestSyntaxError(f"curl: {e}") from e


def _split_flag(token: str) -> Tuple[str, Optional[str]]:
    """`--data=x` -> ("--data", "x"); `-XPOST` -> ("-X", "POST")."""
    if token.startswith("--") and "=" in token:
        flag, value = token.split("=", 1)
        return flag, value
    if not token.startswith("--") and len(token) > 2 and token[:2] in _SHORT_VALUE_FLAGS:
        return token[:2], token[2:]
    return token, None


def _expand_short_bundle(token: str) -> List[str]:
    """`-sSL` -> ["-s", "-S", "-L"]; `-sXPOST` -> ["-s", "-X", "POST"]."""
    if token.startswith("--") or len(token) < 3 or token[:2] not in _SHORT_SWITCHES:
        return [token]
    out: List[str] = []
    for pos in range(1, len(token)):
        flag = "-" + token[pos]
        out.append(flag)
        if flag in _SHORT_VALUE_FLAGS:
            rest = token[pos + 1:]
            if rest:
                out.append(rest)
            break
    return out


def _percent_encode(text: str) -> str:
    # Placeholders get the `%` prefix so the resolver encodes their values
    out: List[str] = []
    last = 0
    for ph in scan(text):
        out.append(quote(text[last:ph.offset], safe=""))
        inner = ph.expression.strip()
        out.append(ph.raw_token if inner.startswith("%") else f"{{{{%{inner}}}}}")
        last = ph.end
    out.append(quote(text[last:], safe=""))
    return "".join(out)


def _urlencode_data(arg: str) -> str:
    """--data-urlencode: `content`, `=content` or `name=content`; only the content is encoded."""
    name, eq, content = arg.partition("=")
    if not eq:
        return _percent_encode(arg)
    if not name:
        return _percent_encode(content)
    return f"{name}={_percent_encode(content)}"


def _merge_repeated(pairs: List[Tuple[str, str]]) -> List[Tuple[str, str]]:
    """Repeated header names are joined into one entry, at the first one's position."""
    merged: dict[str, List[str]] = {}
    order: List[Tuple[str, str]] = []
    for k, v in pairs:
        key = k.lower()
        if key not in merged:
            merged[key] = []
            order.append((key, k))
        merged[key].append(v)
    return [
        (k, ("; " if key == "cookie" else ", ").join(v for v in merged[key] if v))
        for key, k in order
    ]


def is_curl_command(raw_text: str) -> bool:
    return _CURL_RE.match(raw_text) is not None


# ----------------------------
# Parser
# ----------------------------

def parse_curl_command(
    curl_text: str,
    *,
    name: Optional[str] = None,
    shell_env_placeholders: bool = False,
) -> ParseResult:
    """
    Parse a practical subset of curl into a RequestDescriptor.

    Supported:
      - URL: the single positional argument or --url <url>
      - Method: -X/--request <METHOD>, -G/--get
      - Headers: -H/--header "Key: Value", -A/--user-agent, -e/--referer
      - Body: -d/--data/--data-raw/--data-binary/--data-ascii,
        --data-urlencode (content part percent-encoded);
        repeated parts joined with "&"; "-d @file" becomes a file reference
      - Multipart: -F/--form "name=value" or "name=@path"
      - Auth: -u/--user "user:pass" (Basic Authorization header)
      - Cookies: -b/--cookie
      - Recorded for the transport: -L/--location, --compressed, -k/--insecure

    Notes:
      - Data implies POST unless -X is given; -G moves data into the query string.
      - Bundled short switches (-sSL, -sXPOST) are split.
      - Repeated headers are joined into one entry (", ", or "; " for Cookie).
      - Unknown flags are ignored and reported as UnrecognizedCurlFlag warnings.
      - With shell_env_placeholders, $NAME / ${NAME} become {{$processEnv NAME}}.
    """
    tokens = _tokenize(curl_text)
    if not tokens or tokens[0].lower() != "curl":
        raise RequestSyntaxError("not a curl command")
    tokens = tokens[1:]

    conv = _convert_shell_env_to_placeholder if shell_env_placeholders else (lambda s: s)

    method: Optional[str] = None
    header_pairs: List[Tuple[str, str]] = []
    cookies: List[str] = []
    data_parts: List[str] = []
    form_fields: List[FormField] = []
    positionals: List[str] = []
    url_flag: Optional[str] = None
    force_get = False
    follow_redirects = False
    compressed = False
    insecure = False
    warnings: List[Diagnostic] = []

    i = 0
    while i < len(tokens):
        bundle = _expand_short_bundle(tokens[i])
        if len(bundle) > 1:
            tokens[i:i + 1] = bundle
        flag, value = _split_flag(tokens[i])
        i += 1

        if flag in _VALUE_FLAGS and value is None:
            if i >= len(tokens):
                raise RequestSyntaxError(f"curl: missing argument for {flag}")
            value = tokens[i]
            i += 1

        if flag in _METHOD_FLAGS:
            method = value.upper()

        elif flag in _HEADER_FLAGS:
            k, v = _parse_header_kv(value)
            header_pairs.append((conv(k), conv(v)))

        elif flag in _DATA_FLAGS:
            data_parts.append(conv(value))

        elif flag in _URLENCODE_FLAGS:
            data_parts.append(_urlencode_data(conv(value)))

        elif flag in _USER_FLAGS:
            header_pairs.append(("Authorization", basic_auth_value(conv(value))))

        elif flag in _COOKIE_FLAGS:
            cookies.append(conv(value).strip().rstrip(";"))

        elif flag in _FORM_FLAGS:
            fname, _, fvalue = conv(value).partition("=")
            is_file = flag != "--form-string" and fvalue.startswith("@")
            form_fields.append(FormField(fname, fvalue[1:] if is_file else fvalue, is_file))

        elif flag in _USER_AGENT_FLAGS:
            header_pairs.append(("User-Agent", conv(value)))

        elif flag in _REFERER_FLAGS:
            header_pairs.append(("Referer", conv(value)))

        elif flag in _URL_FLAGS:
            url_flag = conv(value)

        elif flag in ("-G", "--get"):
            force_get = True

        elif flag in ("-L", "--location"):
            follow_redirects = True

        elif flag == "--compressed":
            compressed = True

        elif flag in ("-k", "--insecure"):
            insecure = True

        elif flag in ("-I", "--head"):
            method = "HEAD"

        elif flag in _IGNORED_VALUE_FLAGS or flag in _IGNORED_SWITCHES:
            pass

        elif flag.startswith("-") and len(flag) > 1:
            log.warning("ignoring unrecognized curl flag %s", flag)
            warnings.append(UnrecognizedCurlFlag.create(flag))

        else:
            positionals.append(conv(flag))

    if url_flag is not None:
        positionals.insert(0, url_flag)
    if not positionals:
        raise RequestSyntaxError("curl: no URL found")
    if len(positionals) > 1:
        raise RequestSyntaxError(f"curl: ambiguous URL, got {len(positionals)} candidates: {positionals!r}")
    url = positionals[0]

    if cookies:
        header_pairs.append(("Cookie", "; ".join(cookies)))
    headers = Headers(_merge_repeated(header_pairs))

    body = None
    if form_fields:
        body = MultipartBody(tuple(form_fields))
    elif data_parts:
        raw = "&".join(data_parts)
        if force_get:
            url = _append_query(url, raw)
        elif len(data_parts) == 1 and raw.startswith("@"):
            body = FileBody(path=raw[1:])
        else:
            body = raw

    # Infer method
    if force_get:
        inferred_method = "GET"
    elif method is not None:
        inferred_method = method
    elif body is not None:
        inferred_method = "POST"
    else:
        inferred_method = "GET"

    descriptor = RequestDescriptor(
        method=inferred_method,
        url=url,
        headers=headers,
        body=body,
        name=name,
        follow_redirects=follow_redirects,
        compressed=compressed,
        insecure=insecure,
    )
    log.debug("parsed curl request %s %s (%d warning(s))", inferred_method, url, len(warnings))
    return ParseResult(descriptor, tuple(warnings))
