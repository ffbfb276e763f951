"""Token counting for traces without vendor-reported usage."""

import logging
from functools import lru_cache

import tiktoken

logger = logging.getLogger(__name__)

# Used by GPT-4 and GPT-3.5; the closest match for models tiktoken does not know
DEFAULT_ENCODING = "cl100k_base"


@lru_cache(maxsize=64)
def get_encoding(model: str) -> tiktoken.Encoding:
    """Get the tiktoken encoding for a model, falling back to cl100k_base."""
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        logger.debug(
            "Unknown model for tiktoken, using default encoding",
            extra={"model": model, "encoding": DEFAULT_ENCODING},
        )
        return tiktoken.get_encoding(DEFAULT_ENCODING)


def default_token_count(text: str, model: str) -> int | None:
    """Count tokens in text with the model's tiktoken encoding.

    Returns None for empty text so the trace carries no usage rather than a
    misleading zero.
    """
    if not text:
        return None
    return len(get_encoding(model).encode(text))
