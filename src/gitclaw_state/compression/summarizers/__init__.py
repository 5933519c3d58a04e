"""Tool-call summarizers used by the compressor."""

from .base import CallSummary, GenericSummarizer, Summarizer, SummarizerRegistry, find_target
from .file_tools import FileEditSummarizer, FileWriteSummarizer
from .shell import ShellSummarizer

__all__ = [
    "CallSummary",
    "FileEditSummarizer",
    "FileWriteSummarizer",
    "GenericSummarizer",
    "ShellSummarizer",
    "Summarizer",
    "SummarizerRegistry",
    "find_target",
]

# Register summarizers
SummarizerRegistry.register(FileEditSummarizer())
SummarizerRegistry.register(FileWriteSummarizer())
SummarizerRegistry.register(ShellSummarizer())
