"""Pixel script language: parser, static capability checks and compiler."""

from .compiler import CompiledPixelFunction, compile_script
from .parser import parse

__all__ = ["CompiledPixelFunction", "compile_script", "parse"]
