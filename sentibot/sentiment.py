from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class Sentiment(str, Enum):
    EXTREME_FEAR = "EXTREME_FEAR"
    FEAR = "FEAR"
    NEUTRAL = "NEUTRAL"
    GREED = "GREED"
    EXTREME_GREED = "EXTREME_GREED"


@dataclass(slots=True)
class Classification:
    sentiment: Sentiment
    value: float | None
    valid: bool = True
    reason: str = ""


def is_buy_side(sentiment: Sentiment) -> bool:
    return sentiment in {Sentiment.EXTREME_FEAR, Sentiment.FEAR}


def is_sell_side(sentiment: Sentiment) -> bool:
    return sentiment in {Sentiment.GREED, Sentiment.EXTREME_GREED}


def parse_sentiment(value: Any) -> Sentiment | None:
    if isinstance(value, Sentiment):
        return value
    try:
        return Sentiment(str(value).strip().upper())
    except ValueError:
        return None


def _numeric(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def boundaries_valid(boundaries: Any) -> bool:
    try:
        values = [
            _numeric(boundaries.extreme_fear),
            _numeric(boundaries.fear),
            _numeric(boundaries.greed),
            _numeric(boundaries.extreme_greed),
        ]
    except AttributeError:
        return False
    if any(item is None for item in values):
        return False
    return all(values[idx] < values[idx + 1] for idx in range(len(values) - 1))


def classify(value: Any, boundaries: Any) -> Classification:
    if not boundaries_valid(boundaries):
        logger.warning("sentiment boundaries are not strictly ascending: %s", boundaries)
        return Classification(Sentiment.NEUTRAL, None, valid=False, reason="invalid boundaries")
    number = _numeric(value)
    if number is None:
        logger.warning("non-numeric sentiment value %r; treating as NEUTRAL", value)
        return Classification(Sentiment.NEUTRAL, None, valid=False, reason="non-numeric value")
    if number < 0 or number > 100:
        logger.warning("sentiment value %s outside [0, 100]; treating as NEUTRAL", number)
        return Classification(Sentiment.NEUTRAL, number, valid=False, reason="out of range")

    if number < float(boundaries.extreme_fear):
        sentiment = Sentiment.EXTREME_FEAR
    elif number < float(boundaries.fear):
        sentiment = Sentiment.FEAR
    elif number < float(boundaries.greed):
        sentiment = Sentiment.NEUTRAL
    elif number < float(boundaries.extreme_greed):
        sentiment = Sentiment.GREED
    else:
        sentiment = Sentiment.EXTREME_GREED
    return Classification(sentiment, number)
