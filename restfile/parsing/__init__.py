from .models import (
    FileBody,
    FormField,
    Headers,
    MultipartBody,
    ParseResult,
    RequestDescriptor,
    )
from .plain import parse_plain_request, parse_request_line
from .curl import is_curl_command, parse_curl_command
from .factory import BlockOutcome, create_parser, parse_block, parse_document
