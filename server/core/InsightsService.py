"""Answer feedback capture and weekly topic trend analysis over user questions."""

from datetime import datetime, timedelta

from pydantic import BaseModel

from shared.helper.HelperConfig import HelperConfig
from shared.models.access import Principal
from shared.persistence.ConversationStore import ConversationStore, utcnow

TOPIC_KEYWORDS: dict[str, list[str]] = {
    "burnout": ["overwhelmed", "burnout", "exhausted", "stressed", "too much work", "overload", "overworking", "work-life balance"],
    "salary": ["pay", "salary", "compensation", "raise", "underpaid", "remuneration", "bonus"],
    "conflict": ["conflict", "dispute", "argument", "disagree", "issue with", "problem with my manager", "toxic", "complaint"],
    "feedback": ["feedback", "performance review", "self-assessment", "1:1", "one-on-one", "goals"],
    "dei": ["diversity", "inclusion", "equity", "belonging", "inclusive language", "bias", "unfair", "allyship"],
    "promotion": ["promotion", "career growth", "next level", "advancement", "get promoted", "career path"],
    "training": ["training", "learn", "course", "skill up", "development", "education", "lms"],
}

ALERT_MIN_MENTIONS = 3
ALERT_MIN_INCREASE_PCT = 50
WINDOW = timedelta(days=7)


class TrendAlert(BaseModel):
    topic: str
    message: str


class TrendReport(BaseModel):
    time_period: str
    total_queries_this_week: int
    total_queries_last_week: int
    topic_counts: dict[str, int]
    alerts: list[TrendAlert]


def count_topics(contents: list[str]) -> dict[str, int]:
    """Number of messages mentioning each topic; a message counts at most once per topic."""
    counts = {topic: 0 for topic in TOPIC_KEYWORDS}
    for content in contents:
        lowered = content.lower()
        for topic, keywords in TOPIC_KEYWORDS.items():
            if any(keyword in lowered for keyword in keywords):
                counts[topic] += 1
    return counts


def detect_alerts(recent: dict[str, int], previous: dict[str, int]) -> list[TrendAlert]:
    alerts = []
    for topic, count in recent.items():
        if count <= ALERT_MIN_MENTIONS:
            continue
        before = previous.get(topic, 0)
        if before == 0:
            alerts.append(TrendAlert(topic=topic, message=f"New trend detected for '{topic}' with {count} mentions this week."))
            continue
        change = (count - before) / before * 100
        if change > ALERT_MIN_INCREASE_PCT:
            alerts.append(TrendAlert(
                topic=topic,
                message=f"Significant increase in '{topic}' queries: {count} mentions, a {change:.0f}% increase from the previous week.",
            ))
    return alerts


class InsightsService:
    def __init__(self, helper_config: HelperConfig, conversation_store: ConversationStore) -> None:
        self.logging = helper_config.get_logger()
        self._conversation_store = conversation_store

    async def record_feedback(self, principal: Principal, query: str, response: str, feedback: str, sources: list[str | dict]) -> str:
        """Store a thumbs up/down rating. Source objects are reduced to their source name."""
        names = []
        for source in sources:
            if isinstance(source, dict):
                name = (source.get("metadata") or {}).get("source") or source.get("source")
            else:
                name = source
            if name:
                names.append(str(name))
        feedback_id = await self._conversation_store.add_feedback(principal.id, query, response, feedback, names)
        self.logging.info("Recorded %s feedback from user %s.", feedback, principal.id)
        return feedback_id

    async def analyze_trends(self, now: datetime | None = None) -> TrendReport:
        """Compare topic mentions in user questions of the last 7 days with the 7 days before."""
        now = now or utcnow()
        week_ago = now - WINDOW
        two_weeks_ago = now - 2 * WINDOW

        recent_messages = await self._conversation_store.list_user_messages_between(week_ago, now + timedelta(microseconds=1))
        previous_messages = await self._conversation_store.list_user_messages_between(two_weeks_ago, week_ago)

        recent_counts = count_topics(recent_messages)
        alerts = detect_alerts(recent_counts, count_topics(previous_messages))
        if alerts:
            self.logging.info("Trend analysis raised %d alert(s): %s", len(alerts), ", ".join(alert.topic for alert in alerts))

        return TrendReport(
            time_period=f"Last 7 days ({week_ago:%a %b %d %Y} - {now:%a %b %d %Y})",
            total_queries_this_week=len(recent_messages),
            total_queries_last_week=len(previous_messages),
            topic_counts=recent_counts,
            alerts=alerts,
        )
