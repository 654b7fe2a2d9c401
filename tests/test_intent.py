from datetime import timedelta

import pytest

from timelinter.tools.intent import infer_allow


class TestInferAllow:
    def test_no_intent(self):
        assert infer_allow("Close YouTube and get back to the report.") is None
        assert infer_allow("   ") is None

    def test_explicit_minutes(self):
        allow = infer_allow("Go ahead, take 25 minutes.", app="YouTube")
        assert allow.duration == timedelta(minutes=25)
        assert allow.app == "YouTube"

    @pytest.mark.parametrize(
        "message,minutes",
        [
            ("Enjoy your shower!", 20),
            ("Enjoy your lunch, no rush.", 30),
            ("Take a break, you earned it.", 15),
            ("Take your time.", 10),
        ],
    )
    def test_heuristics(self, message, minutes):
        assert infer_allow(message).duration == timedelta(minutes=minutes)

    def test_clamped(self):
        assert infer_allow("Go ahead, 999 minutes.").duration == timedelta(minutes=240)

    def test_blank_app_is_global(self):
        assert infer_allow("Take your time.", app=" ").app is None
