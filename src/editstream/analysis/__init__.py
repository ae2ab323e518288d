"""Problem analyzers consumed by the auto-fix loop."""

from .analyzer import ProblemAnalyzer, PythonSyntaxAnalyzer

__all__ = ["ProblemAnalyzer", "PythonSyntaxAnalyzer"]
