"""
Generate-or-fallback adapter

Planning, reflection, decision making and importance scoring all follow the
same shape: try the language model, and on unavailability, failure or
malformed output use a deterministic heuristic. This module is that shape.
"""

import asyncio
import inspect
from typing import Awaitable, Callable, TypeVar, Union

from loguru import logger

from mazemind.errors import CapabilityUnavailableError, MalformedResponseError

TAG = __name__

T = TypeVar("T")


async def generate_or_fallback(
    primary: Callable[[], Awaitable[T]],
    fallback: Callable[[], Union[T, Awaitable[T]]],
    *,
    label: str,
    available: bool = True,
) -> T:
    """
    Run the primary async producer, falling back to a deterministic one

    Args:
        primary: async producer, usually an LLM call plus response parsing
        fallback: heuristic producer (sync or async), must not fail
        label: name used in log lines
        available: False skips the primary entirely

    Returns:
        the primary result, or the fallback result
    """
    if available:
        try:
            return await primary()
        except CapabilityUnavailableError as e:
            logger.bind(tag=TAG).debug(f"[{label}] capability unavailable: {e}")
        except MalformedResponseError as e:
            logger.bind(tag=TAG).warning(f"[{label}] malformed model output, using heuristic: {e}")
        except asyncio.TimeoutError:
            logger.bind(tag=TAG).error(f"[{label}] model call timed out, using heuristic")
        except Exception as e:
            logger.bind(tag=TAG).error(f"[{label}] model call failed, using heuristic: {e}")
    else:
        logger.bind(tag=TAG).debug(f"[{label}] no model available, using heuristic")

    result = fallback()
    if inspect.isawaitable(result):
        result = await result
    return result
