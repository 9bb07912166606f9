"""
Reporting module for apiary.

Output formats:
    - Console: Rich tree of requests, payload panels and history tables
    - JSON: Structured views for programmatic consumption

The path tree (apiary.report.tree) is shared by both.
"""

from apiary.report.console import (
    print_document_summary,
    print_endpoints,
    print_kinds,
    print_request,
    print_request_tree,
    print_response,
    print_sql_result,
)
from apiary.report.json import build_list_dict, request_to_dict, to_json
from apiary.report.tree import PathTree, build_path_tree

__all__ = [
    "PathTree",
    "build_list_dict",
    "build_path_tree",
    "print_document_summary",
    "print_endpoints",
    "print_kinds",
    "print_request",
    "print_request_tree",
    "print_response",
    "print_sql_result",
    "request_to_dict",
    "to_json",
]
