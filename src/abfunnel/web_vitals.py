# Copyright (c) Syntropy Systems
"""One-shot Web Vitals snapshot taken inside the browser page.

The observers run for a short fixed window and are always disconnected
before the promise resolves; metrics that never fired report 0. This is
good enough for comparing variants against each other, not for absolute
Web Vitals numbers.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, cast

from abfunnel.models.run import WebVitals

if TYPE_CHECKING:
    from collections.abc import Awaitable

DEFAULT_WINDOW_MS = 1000

WEB_VITALS_SCRIPT = """
(windowMs) => new Promise((resolve) => {
  const metrics = { lcp: 0, fid: 0, cls: 0, ttfb: 0 };
  const observers = [];
  const observe = (type, callback) => {
    try {
      const observer = new PerformanceObserver((list) => callback(list.getEntries()));
      observer.observe({ type, buffered: true });
      observers.push(observer);
    } catch (err) {
      // Entry type not supported by this browser
    }
  };

  observe('largest-contentful-paint', (entries) => {
    const last = entries[entries.length - 1];
    if (last) {
      metrics.lcp = last.renderTime || last.loadTime || last.startTime || 0;
    }
  });

  observe('first-input', (entries) => {
    entries.forEach((entry) => {
      metrics.fid = entry.processingStart - entry.startTime;
    });
  });

  let clsValue = 0;
  observe('layout-shift', (entries) => {
    entries.forEach((entry) => {
      if (!entry.hadRecentInput) {
        clsValue += entry.value;
      }
    });
    metrics.cls = clsValue;
  });

  const nav = performance.getEntriesByType('navigation')[0];
  if (nav) {
    metrics.ttfb = nav.responseStart - nav.requestStart;
  }

  setTimeout(() => {
    observers.forEach((observer) => observer.disconnect());
    resolve(metrics);
  }, windowMs);
})
"""


class SyncPage(Protocol):
    def evaluate(self, expression: str, arg: object = ...) -> object:
        ...


class AsyncPage(Protocol):
    def evaluate(self, expression: str, arg: object = ...) -> Awaitable[object]:
        ...


def _to_vitals(raw: object) -> WebVitals:
    if not isinstance(raw, dict):
        return WebVitals()
    return WebVitals.model_validate(cast("dict[str, object]", raw))


class WebVitalsSampler:
    """Collect LCP, FID, CLS and TTFB from a Playwright page."""

    def __init__(self, window_ms: int = DEFAULT_WINDOW_MS) -> None:
        self.window_ms = window_ms

    def sample(self, page: SyncPage) -> WebVitals:
        """Take a snapshot using the sync Playwright API."""
        return _to_vitals(page.evaluate(WEB_VITALS_SCRIPT, self.window_ms))

    async def sample_async(self, page: AsyncPage) -> WebVitals:
        """Take a snapshot using the async Playwright API."""
        return _to_vitals(await page.evaluate(WEB_VITALS_SCRIPT, self.window_ms))
