from .scanner import Placeholder, has_placeholders, parse_expression, scan
from .cache import RequestRecord, RequestVariableCache, ResponseRecord, ResponseStore
from .providers import (
    NOT_FOUND,
    EnvironmentProvider,
    FileVariableProvider,
    NotFound,
    ProcessEnvProvider,
    ProviderKind,
    ResolutionContext,
    VariableProvider,
    )
# importing .system registers the built-in $ functions
from .system import SystemFunctionProvider, registered_functions, system_function
from .request_vars import RequestVariableProvider, evaluate_json_path
from .resolver import (
    ResolutionOutcome,
    ResolutionResult,
    VariableResolver,
    build_context,
    default_providers,
    resolve,
    )
