"""
AI Trader — Input Collector

Caller-side async boundary in front of the synchronous core. Awaits the
caller's candle and sentiment fetchers concurrently across timeframes
(bounded by a semaphore) and hands back ``(candles, context)`` ready for
``SignalEngine.analyze``. A failing fetcher degrades to an empty series or
neutral sentiment.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, Sequence

import structlog

from aitrader.engines.normalizer import normalize_candles, select_timeframe
from aitrader.models import AnalysisContext, Candle, NewsContext, TradeMode
from aitrader.observability import traced

log = structlog.get_logger(__name__)

CandleFetcher = Callable[[str, str], Awaitable[Any]]
SentimentFetcher = Callable[[str], Awaitable[Any]]

DEFAULT_TIMEFRAMES = ("15m", "1h", "5m", "1m")


def _to_news(raw: Any) -> Optional[NewsContext]:
    return None if raw is None else NewsContext.model_validate(raw)


@traced("collector.gather_inputs")
async def gather_inputs(
    symbol: str,
    fetch_candles: CandleFetcher,
    timeframes: Sequence[str] = DEFAULT_TIMEFRAMES,
    fetch_sentiment: Optional[SentimentFetcher] = None,
    primary: Optional[str] = None,
    max_concurrency: int = 4,
    timeout: Optional[float] = None,
    mode: TradeMode = TradeMode.NORMAL,
) -> tuple[list[Candle], AnalysisContext]:
    """Fetch every timeframe (and sentiment) concurrently.

    Args:
        symbol: Instrument identifier passed through to the fetchers.
        fetch_candles: ``await fetch_candles(symbol, timeframe)`` → raw records.
        timeframes: Timeframes to request.
        fetch_sentiment: Optional ``await fetch_sentiment(symbol)`` → float / dict / NewsContext.
        primary: Timeframe analysed as the main series; preferred order when omitted.
        max_concurrency: Upper bound on in-flight fetches.
        timeout: Per-fetch timeout in seconds.
        mode: Trade mode recorded on the context.
    """
    semaphore = asyncio.Semaphore(max(1, max_concurrency))

    async def _bounded(coro_factory: Callable[[], Awaitable[Any]]) -> Any:
        async with semaphore:
            if timeout is not None:
                return await asyncio.wait_for(coro_factory(), timeout)
            return await coro_factory()

    async def _candles(tf: str) -> list[Candle]:
        try:
            raw = await _bounded(lambda: fetch_candles(symbol, tf))
        except Exception as e:
            log.warning("collector.candles_failed", symbol=symbol, timeframe=tf, error=str(e))
            return []
        return normalize_candles(raw)

    async def _sentiment() -> Optional[NewsContext]:
        if fetch_sentiment is None:
            return None
        try:
            return _to_news(await _bounded(lambda: fetch_sentiment(symbol)))
        except Exception as e:
            log.warning("collector.sentiment_failed", symbol=symbol, error=str(e))
            return None

    results = await asyncio.gather(*(_candles(tf) for tf in timeframes), _sentiment())
    series = dict(zip(timeframes, results[:-1]))
    news = results[-1]

    if primary is not None and series.get(primary):
        main_tf, main = primary, series[primary]
    else:
        main_tf, main = select_timeframe(series)

    log.debug(
        "collector.gathered",
        symbol=symbol,
        primary=main_tf,
        sizes={tf: len(v) for tf, v in series.items()},
    )
    context = AnalysisContext(
        symbol=symbol,
        timeframe=main_tf,
        news=news,
        timeframes={tf: v for tf, v in series.items() if v},
        mode=mode,
    )
    return list(main), context
