"""JavaScript / TypeScript analysis built on tree-sitter.

Quick start::

    from reposcope.scanners.script import ASTEngine

    engine = ASTEngine()
    ast = engine.parse("var x = eval(input);")
    for call in engine.find_function_calls(ast):
        print(call.name, call.line)
"""

from .ast_engine import (
    ASTEngine,
    FunctionCall,
    FunctionDefinition,
    ImportStatement,
    ParsedAST,
    StringLiteral,
)
from .detectors import SCRIPT_DETECTORS

__all__ = [
    "ASTEngine",
    "FunctionCall",
    "FunctionDefinition",
    "ImportStatement",
    "ParsedAST",
    "SCRIPT_DETECTORS",
    "StringLiteral",
]
