"""Wire protocol decoders -- one per backend family."""

from modelbridge.llm.decoders.anthropic_blocks import AnthropicBlockDecoder
from modelbridge.llm.decoders.base import StreamDecoder, decode_chunks, decode_stream
from modelbridge.llm.decoders.completion import (
    Completion,
    decode_completion,
    extract_xml_fallback,
    parse_completion,
)
from modelbridge.llm.decoders.openai_delta import OpenAIDeltaDecoder

__all__ = [
    "AnthropicBlockDecoder",
    "Completion",
    "OpenAIDeltaDecoder",
    "StreamDecoder",
    "decode_chunks",
    "decode_completion",
    "decode_stream",
    "extract_xml_fallback",
    "parse_completion",
]
