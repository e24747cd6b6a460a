import pytest

from genbook.api.routes.voice import classify_intent


@pytest.mark.parametrize("transcript,intent", [
    ("Book a cleaning with Dr. Rao tomorrow at 3", "create_appointment"),
    ("cancel my appointment on Friday", "cancel_appointment"),
    ("Please reschedule the 4pm to Monday", "reschedule_appointment"),
    ("What do I have upcoming this week?", "list_appointments"),
    ("hello there", "unknown"),
])
def test_classify_intent(transcript, intent):
    assert classify_intent(transcript) == intent
