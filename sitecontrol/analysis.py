"""
Schedule analysis through an external text-generation service.

Records are reduced to a small payload (item, dates, variance, status,
remarks), optionally narrowed to late / recent / upcoming items, and sent
once to the generator. The reply must be a JSON object with ``summary``,
``criticalDelays`` and ``recommendations``; anything else fails the call.
"""

import json
import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import date

from google import genai
from google.genai import types

from sitecontrol import config
from sitecontrol.classification import severity_for
from sitecontrol.datemath import days_until, variance_days
from sitecontrol.models import PROCUREMENT, get_kind

logger = logging.getLogger(__name__)

LATE = "late"
RECENT = "recent"
UPCOMING = "upcoming"
FILTERS = (LATE, RECENT, UPCOMING)


class AnalysisError(Exception):
    """The analysis call failed; ``str(exc)`` is safe to show to the user."""


class AnalysisBusyError(AnalysisError):
    """Another analysis request from this session is still running."""


@dataclass
class AnalysisResult:
    summary: str
    critical_delays: list = field(default_factory=list)
    recommendations: list = field(default_factory=list)

    def to_dict(self):
        return {
            "summary": self.summary,
            "criticalDelays": list(self.critical_delays),
            "recommendations": list(self.recommendations),
        }


NO_CRITICAL_SUMMARY = {
    "zh-TW": "目前沒有需要關注的延誤或即將到期項目。",
    "en": "No critical items: nothing is late, recently completed or due soon.",
}


def no_critical_result(locale=None):
    loc = locale or config.LOCALE
    return AnalysisResult(summary=NO_CRITICAL_SUMMARY.get(loc, NO_CRITICAL_SUMMARY["en"]))


# ─────────────────────────────────────────────────────────────────────────────
#  PAYLOAD
# ─────────────────────────────────────────────────────────────────────────────
def _is_late(scheduled, actual, variance, today):
    if variance is not None:
        return variance < 0
    if actual:
        return False
    ahead = days_until(scheduled, today)
    return ahead is not None and ahead < 0


def _is_recent(actual, today):
    ago = days_until(actual, today)
    return ago is not None and -config.ANALYSIS_RECENT_DAYS <= ago <= 0


def _is_upcoming(scheduled, today):
    ahead = days_until(scheduled, today)
    return ahead is not None and 0 <= ahead <= config.ANALYSIS_UPCOMING_DAYS


def reduce_records(kind, records, today=None, filters=None, locale=None):
    """
    Reduce records to ``{item, scheduled, actual, variance, status, remarks}``.

    With ``filters`` only records matching at least one of them are kept:
    ``late`` (behind schedule), ``recent`` (actual date in the last 30
    days) and ``upcoming`` (scheduled in the next 30 days). Records with no
    item name are skipped.
    """
    spec = get_kind(kind)
    today = today or date.today()
    wanted = set(filters or ())
    unknown = wanted - set(FILTERS)
    if unknown:
        raise ValueError(f"Unknown analysis filter(s): {', '.join(sorted(unknown))}")

    payload = []
    for r in records:
        item = (r.get(spec.title_field) or "").strip()
        if not item:
            continue
        scheduled = r.get(spec.scheduled_field, "")
        actual = r.get(spec.actual_field, "")
        variance = variance_days(scheduled, actual)
        if wanted:
            keep = (
                (LATE in wanted and _is_late(scheduled, actual, variance, today))
                or (RECENT in wanted and _is_recent(actual, today))
                or (UPCOMING in wanted and _is_upcoming(scheduled, today))
            )
            if not keep:
                continue
        payload.append({
            "item": item,
            "scheduled": scheduled,
            "actual": actual,
            "variance": variance,
            "status": severity_for(spec, variance).label(locale),
            "remarks": r.get("remarks", ""),
        })
    return payload


def build_prompt(kind, payload, today=None):
    today = today or date.today()
    what = "procurement request" if get_kind(kind).name == PROCUREMENT else "construction stage"
    return (
        f"Analyze the following construction {what} schedule data as a project manager.\n"
        f"Today is {today.isoformat()}.\n\n"
        f"Data:\n{json.dumps(payload, ensure_ascii=False)}\n\n"
        "Logic:\n"
        "- Variance = Scheduled Date - Actual Date, in days.\n"
        "- Negative variance means the item was late (delay).\n"
        "- Positive variance means it was early.\n\n"
        "Return a JSON object strictly adhering to this schema "
        "(do not include markdown code blocks):\n"
        "{\n"
        '  "summary": "A brief executive summary of the schedule status.",\n'
        '  "criticalDelays": ["Items that are critically delayed and by how many days."],\n'
        '  "recommendations": ["Actionable advice to recover schedule or improve process."]\n'
        "}\n"
    )


# ─────────────────────────────────────────────────────────────────────────────
#  RESPONSE
# ─────────────────────────────────────────────────────────────────────────────
_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def _string_list(data, key):
    value = data.get(key)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise AnalysisError(f"Analysis response field {key!r} must be a list of strings")
    return value


def parse_analysis(text):
    """Validate a generator reply and turn it into an ``AnalysisResult``."""
    body = (text or "").strip()
    m = _FENCE.match(body)
    if m:
        body = m.group(1)
    if not body:
        raise AnalysisError("The analysis service returned an empty response")
    try:
        data = json.loads(body)
    except json.JSONDecodeError as exc:
        raise AnalysisError("The analysis service returned malformed JSON") from exc
    if not isinstance(data, dict):
        raise AnalysisError("The analysis response is not a JSON object")
    summary = data.get("summary")
    if not isinstance(summary, str):
        raise AnalysisError("Analysis response field 'summary' must be a string")
    return AnalysisResult(
        summary=summary,
        critical_delays=_string_list(data, "criticalDelays"),
        recommendations=_string_list(data, "recommendations"),
    )


# ─────────────────────────────────────────────────────────────────────────────
#  GENERATOR PORT
# ─────────────────────────────────────────────────────────────────────────────
class GeminiGenerator:
    """
    Google Gemini text generation, asked for a JSON reply.

    Environment:
        GEMINI_API_KEY            API key
        SITECONTROL_GEMINI_MODEL  model name (default gemini-2.5-flash)
    """

    def __init__(self, api_key=None, model=None):
        self.api_key = api_key if api_key is not None else config.GEMINI_API_KEY
        self.model = model or config.GEMINI_MODEL
        self._client = None

    def _get_client(self):
        if not self.api_key:
            raise AnalysisError("GEMINI_API_KEY is not configured")
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def generate(self, prompt):
        client = self._get_client()
        response = client.models.generate_content(
            model=self.model,
            contents=prompt,
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                temperature=0.3,
            ),
        )
        return response.text or ""


class ScheduleAnalyzer:
    """
    Runs one analysis at a time against a generator port.

    The generator only needs ``generate(prompt) -> str``. There is no retry
    and no partial result: the call either returns an ``AnalysisResult`` or
    raises ``AnalysisError``.
    """

    def __init__(self, generator):
        self.generator = generator
        self._lock = threading.Lock()

    @property
    def busy(self):
        return self._lock.locked()

    def analyze(self, kind, records, today=None, filters=None, locale=None):
        payload = reduce_records(kind, records, today=today, filters=filters, locale=locale)
        if not payload:
            return no_critical_result(locale)

        if not self._lock.acquire(blocking=False):
            raise AnalysisBusyError("An analysis is already running")
        try:
            prompt = build_prompt(kind, payload, today=today)
            try:
                text = self.generator.generate(prompt)
            except AnalysisError:
                raise
            except Exception as exc:
                logger.exception("Analysis request failed")
                raise AnalysisError("The analysis service could not be reached") from exc
            result = parse_analysis(text)
            logger.info("Analysis returned %d critical delays", len(result.critical_delays))
            return result
        finally:
            self._lock.release()
