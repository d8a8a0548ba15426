from .errors import (
    CircularVariableReference,
    Diagnostic,
    DiagnosticKind,
    RecursionDepthExceeded,
    RequestSyntaxError,
    ResolutionError,
    RestFileError,
    UnknownSystemFunctionArgument,
    UnrecognizedCurlFlag,
    UnresolvedVariableWarning,
    )
from .settings import RestClientSettings
from .document import RequestBlock, RequestMetadata, outline, select_at, select_range, split
from .parsing import (
    FileBody,
    Headers,
    MultipartBody,
    ParseResult,
    RequestDescriptor,
    parse_block,
    parse_curl_command,
    parse_document,
    parse_plain_request,
    )
from .variables import (
    RequestVariableCache,
    ResolutionContext,
    ResolutionResult,
    ResponseRecord,
    VariableResolver,
    build_context,
    default_providers,
    resolve,
    system_function,
    )
from .pipeline import PreparedRequest, prepare_document, prepare_request
from .controller import PendingRequest, RequestController, RunReport
