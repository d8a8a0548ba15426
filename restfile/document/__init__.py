from .text_source import Position, TextRange, TextSource
from .declarations import FileVariable, collect_file_variables, iter_file_variables
from .selector import (
    OutlineItem,
    PromptVariable,
    RequestBlock,
    RequestMetadata,
    outline,
    request_names,
    select_at,
    select_range,
    split,
    )
