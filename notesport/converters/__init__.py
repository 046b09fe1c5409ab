"""Text converters between Documents and Markdown, JSON and HTML markup."""

from .json_format import from_json, to_json, to_json_dict
from .markdown import from_markdown, to_markdown
from .markup import body_markup, from_markup, split_title_and_body, to_markup

__all__ = [
    "from_json",
    "to_json",
    "to_json_dict",
    "from_markdown",
    "to_markdown",
    "body_markup",
    "from_markup",
    "split_title_and_body",
    "to_markup",
]
