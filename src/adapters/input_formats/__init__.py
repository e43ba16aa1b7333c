"""Adaptadores de formato de entrada (un módulo por familia).

Cada módulo implementa `core.interfaces.input_format.InputFormat`.
"""

from adapters.input_formats.binary_format import BinaryFormat
from adapters.input_formats.custom_format import CustomFormat, load_parser
from adapters.input_formats.json_format import JsonFormat
from adapters.input_formats.text_format import TextFormatAdapter
from adapters.input_formats.yaml_format import YamlFormat

__all__ = [
	"BinaryFormat",
	"CustomFormat",
	"JsonFormat",
	"TextFormatAdapter",
	"YamlFormat",
	"load_parser",
]
