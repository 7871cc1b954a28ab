from datetime import timedelta

from server.core.InsightsService import count_topics, detect_alerts
from shared.models.access import Principal
from shared.models.conversation import MessageRole
from shared.persistence.ConversationStore import utcnow
from shared.persistence.models import Feedback


class TestTopicCounting:
    def test_message_counts_once_per_topic(self):
        counts = count_topics(["My salary and my bonus are too low", "Is there training on Python?"])
        assert counts["salary"] == 1
        assert counts["training"] == 1
        assert counts["burnout"] == 0

    def test_matching_is_case_insensitive(self):
        assert count_topics(["I feel BURNOUT coming"])["burnout"] == 1


class TestAlerts:
    def test_new_topic_above_threshold_alerts(self):
        alerts = detect_alerts({"salary": 4}, {"salary": 0})
        assert [a.topic for a in alerts] == ["salary"]
        assert "New trend" in alerts[0].message

    def test_large_increase_alerts(self):
        alerts = detect_alerts({"salary": 4}, {"salary": 2})
        assert [a.topic for a in alerts] == ["salary"]
        assert "100% increase" in alerts[0].message

    def test_small_increase_does_not_alert(self):
        assert detect_alerts({"salary": 4}, {"salary": 3}) == []

    def test_few_mentions_do_not_alert(self):
        assert detect_alerts({"salary": 3}, {}) == []


class TestInsightsService:
    async def _ask(self, services, questions):
        conversation = await services.conversation_store.create_conversation("u1", "trends")
        for question in questions:
            await services.conversation_store.append_message(conversation.id, MessageRole.USER, question)
        await services.conversation_store.save_assistant_answer(conversation.id, "salary salary salary", [])

    async def test_recent_week_is_compared_with_previous(self, services):
        await self._ask(services, [f"When is the salary raise {i}?" for i in range(4)] + ["Any training budget?"])

        report = await services.insights_service.analyze_trends()

        assert report.total_queries_this_week == 5
        assert report.total_queries_last_week == 0
        assert report.topic_counts["salary"] == 4
        assert [alert.topic for alert in report.alerts] == ["salary"]

    async def test_older_questions_count_for_previous_week(self, services):
        await self._ask(services, ["How do I get promoted?"])

        report = await services.insights_service.analyze_trends(now=utcnow() + timedelta(days=8))

        assert report.total_queries_this_week == 0
        assert report.total_queries_last_week == 1
        assert report.alerts == []

    async def test_feedback_keeps_source_names(self, services, database):
        feedback_id = await services.insights_service.record_feedback(
            Principal(id="u1"),
            "Leave days?",
            "25 days.",
            "thumbs_up",
            ["handbook.txt", {"pageContent": "...", "metadata": {"source": "policy.pdf"}}],
        )
        async with database.session_factory() as session:
            row = await session.get(Feedback, feedback_id)
        assert row.sources == ["handbook.txt", "policy.pdf"]
        assert row.feedback == "thumbs_up"
