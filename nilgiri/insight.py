"""AI analysis of the run summary via a chat-completions style endpoint.

Best effort: request_insight() never raises for remote failures, it returns a
placeholder so the report is still written.
"""

from __future__ import annotations

import httpx
import orjson

from .exceptions import NilgiriInsightError
from .logging_config import get_logger
from .models import (
    CounterMetric,
    GaugeMetric,
    InsightSettings,
    Metric,
    MetricsModel,
    RateMetric,
    TrendMetric,
)

logger = get_logger("insight")

# Metrics worth showing the model; the rest of the export is mostly noise.
CURATED_METRICS = (
    "http_req_duration",
    "http_req_failed",
    "http_reqs",
    "http_req_waiting",
    "http_req_connecting",
    "http_req_sending",
    "http_req_receiving",
    "tls_handshaking",
    "iteration_duration",
    "iterations",
    "vus",
    "vus_max",
    "checks",
    "data_sent",
    "data_received",
)

SYSTEM_PROMPT = "You are an expert in k6 performance testing and optimization."
INSIGHT_PLACEHOLDER = "AI analysis unavailable"
RETRY_STATUS_MIN = 500

USER_PROMPT_TEMPLATE = """\
You are a performance optimization expert. Analyze the following k6 performance test data and provide actionable insights, recommendations, and fixes in a **strictly structured HTML table format**.

### **Performance Data**
The following table contains key performance metrics collected from a k6 performance test:
<table border="1">
  <tr><th>Metric</th><th>Value</th></tr>
{rows}
</table>

### **Analysis Requirements**
1. **Identify Bottlenecks**: Highlight areas where performance is suboptimal (e.g., high response times, high failure rates, low throughput).
2. **Recommendations for Improvement**: Suggest best practices for optimizing request durations, reducing failures, and enhancing efficiency.
3. **Fix Suggestions**: Provide specific fixes based on the metric values (e.g., caching, load balancing, database optimization).
4. **Detailed Explanations**: Explain why each recommendation is relevant and how it addresses the identified issue.

### **Output Format**
You **MUST** return the result in the following **strictly structured HTML table format**:

<table border="1">
  <tr>
    <th>Metric</th>
    <th>Value</th>
    <th>Issue</th>
    <th>Recommendation</th>
    <th>Fix/Suggestion</th>
    <th>Explanation</th>
  </tr>
  <tr>
    <td>http_req_duration (p95)</td>
    <td>1200.00ms</td>
    <td>High response time for 95% of requests</td>
    <td>Optimize database queries and reduce server-side processing time</td>
    <td>1. Add database indexes. 2. Use caching for frequently accessed data.</td>
    <td>High p95 response times mean most requests are slow. Query optimization and caching reduce response times.</td>
  </tr>
</table>

Rules
1. Strict Formatting: You MUST use the exact HTML table structure provided above. Do not add extra columns.
2. Rounding: All numerical values MUST be rounded to 2 decimal places.
3. Specificity: Recommendations and fixes MUST be specific and actionable. Avoid generic advice.
4. Consistency: Ensure the output is consistent with the example provided.
"""


def _fmt(v: float | None) -> str:
    if v is None:
        return "N/A"
    return f"{v:.2f}"


def summarize_metric(metric: Metric) -> str:
    """Compact one-line rendering of a metric for the prompt."""
    if isinstance(metric, TrendMetric):
        parts = [
            f"avg={_fmt(metric.avg)}",
            f"min={_fmt(metric.min)}",
            f"med={_fmt(metric.med)}",
            f"max={_fmt(metric.max)}",
        ]
        parts.extend(f"{k}={_fmt(v)}" for k, v in metric.percentiles.items())
        return ", ".join(parts)
    if isinstance(metric, RateMetric):
        return f"passes={metric.passes}, fails={metric.fails}, rate={_fmt(metric.value)}"
    if isinstance(metric, CounterMetric):
        return f"count={_fmt(metric.count)}, rate={_fmt(metric.rate)}/s"
    if isinstance(metric, GaugeMetric):
        return f"value={_fmt(metric.value)}, min={_fmt(metric.min)}, max={_fmt(metric.max)}"
    return "N/A"


def build_prompt(model: MetricsModel) -> str:
    rows = [
        f"  <tr><td>{name}</td><td>{summarize_metric(model.metrics[name])}</td></tr>"
        for name in CURATED_METRICS
        if name in model
    ]
    return USER_PROMPT_TEMPLATE.format(rows="\n".join(rows))


def build_payload(model: MetricsModel, temperature: float) -> dict:
    return {
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_prompt(model)},
        ],
        "temperature": temperature,
    }


def _extract_content(response: httpx.Response) -> str:
    try:
        body = orjson.loads(response.content)
        content = body["choices"][0]["message"]["content"]
    except (orjson.JSONDecodeError, KeyError, IndexError, TypeError) as e:
        raise NilgiriInsightError(
            "Malformed response from AI endpoint",
            context={"status": response.status_code},
            original_error=e,
        ) from e
    if not isinstance(content, str):
        raise NilgiriInsightError("AI endpoint returned non-text content")
    return content.strip()


async def _post_once(client: httpx.AsyncClient, settings: InsightSettings, body: bytes) -> httpx.Response:
    return await client.post(
        settings.endpoint,
        content=body,
        headers={"Content-Type": "application/json", "api-key": settings.api_key},
        timeout=httpx.Timeout(settings.timeout_seconds),
    )


async def fetch_insight(
    model: MetricsModel,
    settings: InsightSettings,
    client: httpx.AsyncClient | None = None,
) -> str:
    """POST the summary to the AI endpoint and return the answer text.

    Transport errors and 5xx responses are retried `settings.retries` times;
    anything else fails immediately.

    Raises:
        NilgiriInsightError: request could not be built or sent, non-2xx
            status, or malformed body
    """
    body = orjson.dumps(build_payload(model, settings.temperature))
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient()
    attempts = 1 + max(0, settings.retries)
    last_error: NilgiriInsightError | None = None
    try:
        for attempt in range(1, attempts + 1):
            try:
                response = await _post_once(client, settings, body)
            except httpx.InvalidURL as e:
                raise NilgiriInsightError(
                    f"Invalid AI endpoint URL: {e}", original_error=e
                ) from e
            except ValueError as e:
                # Request could not be built, e.g. a non-ASCII api-key header
                raise NilgiriInsightError(
                    f"Invalid AI request: {type(e).__name__}", original_error=e
                ) from e
            except httpx.HTTPError as e:
                last_error = NilgiriInsightError(
                    f"AI request failed: {type(e).__name__}",
                    context={"attempt": attempt},
                    original_error=e,
                )
                logger.warning("AI request attempt %d/%d failed: %s", attempt, attempts, e)
                continue
            if response.status_code >= RETRY_STATUS_MIN:
                last_error = NilgiriInsightError(
                    f"AI endpoint returned HTTP {response.status_code}",
                    context={"attempt": attempt},
                )
                logger.warning("AI request attempt %d/%d got HTTP %s", attempt, attempts, response.status_code)
                continue
            if not response.is_success:
                raise NilgiriInsightError(
                    f"AI endpoint returned HTTP {response.status_code}",
                    context={"status": response.status_code},
                )
            return _extract_content(response)
    finally:
        if owns_client:
            await client.aclose()
    if last_error is None:
        last_error = NilgiriInsightError("AI request was not attempted")
    raise last_error


async def request_insight(
    model: MetricsModel,
    settings: InsightSettings,
    client: httpx.AsyncClient | None = None,
) -> tuple[str, bool]:
    """Fetch the AI analysis, degrading to a placeholder on failure.

    Returns:
        (text, available): available is False when the placeholder was used
    """
    try:
        text = await fetch_insight(model, settings, client=client)
    except NilgiriInsightError as e:
        logger.error("AI analysis failed, report will be written without it: %s", e)
        return f"{INSIGHT_PLACEHOLDER}: {e.message}", False
    except Exception as e:
        logger.exception("Unexpected error during AI analysis; report will be written without it")
        return f"{INSIGHT_PLACEHOLDER}: unexpected {type(e).__name__}", False
    logger.info("AI analysis received (%d chars)", len(text))
    return text, True
