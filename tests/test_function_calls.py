import json
from datetime import timedelta

import pytest

from timelinter.tools.function_calls import function_declarations, parse_function_calls, tool_from_call
from timelinter.tools.types import MAX_COMMAND_MINUTES, Allow, Remember, ToolCallIssueReason


class TestToolFromCall:
    def test_allow(self):
        assert tool_from_call("allow", {"minutes": 10, "app": "YouTube"}) == Allow(
            duration=timedelta(minutes=10), app="YouTube"
        )

    def test_allow_without_app_is_global(self):
        assert tool_from_call("ALLOW", {"minutes": "15", "app": "  "}) == Allow(duration=timedelta(minutes=15))

    def test_remember_forever_when_minutes_missing(self):
        assert tool_from_call("remember", {"content": "likes chess"}) == Remember(content="likes chess")

    def test_remember_with_minutes(self):
        assert tool_from_call("remember", {"content": "x", "minutes": 30.0}) == Remember(
            content="x", duration=timedelta(minutes=30)
        )

    @pytest.mark.parametrize(
        "name,args",
        [
            ("allow", {}),
            ("allow", {"minutes": 0}),
            ("allow", {"minutes": -3}),
            ("allow", {"minutes": True}),
            ("allow", {"minutes": "ten"}),
            ("remember", {"content": ""}),
            ("remember", {"content": "x", "minutes": 0}),
            ("remember", None),
        ],
    )
    def test_invalid_args(self, name, args):
        assert tool_from_call(name, args) is None

    def test_unknown_name(self):
        with pytest.raises(LookupError):
            tool_from_call("shutdown", {})

    def test_declarations(self):
        names = [d["name"] for d in function_declarations()]
        assert names == ["allow", "remember"]


class TestParseFunctionCalls:
    def test_text_and_calls(self):
        parsed = parse_function_calls(
            [
                {"text": "Enjoy, but come back after."},
                {"function_call": {"name": "allow", "args": {"minutes": 15, "app": "YouTube"}}},
                {"functionCall": {"name": "remember", "args": {"content": "on vacation", "minutes": 1440}}},
            ]
        )
        assert parsed.user_message == "Enjoy, but come back after."
        assert parsed.tools == [
            Allow(duration=timedelta(minutes=15), app="YouTube"),
            Remember(content="on vacation", duration=timedelta(minutes=1440)),
        ]
        assert parsed.tool_errors == []

    def test_json_string_in_code_fence(self):
        payload = "```json\n" + json.dumps({"parts": [{"name": "allow", "args": {"minutes": 5}}]}) + "\n```"
        parsed = parse_function_calls(payload)
        assert parsed.tools == [Allow(duration=timedelta(minutes=5))]
        assert parsed.user_message == ""

    def test_args_as_json_string(self):
        parsed = parse_function_calls([{"function_call": {"name": "allow", "args": '{"minutes": 8}'}}])
        assert parsed.tools == [Allow(duration=timedelta(minutes=8))]

    def test_plain_text_payload(self):
        parsed = parse_function_calls("Not JSON at all.\nALLOW 5")
        assert parsed.user_message == "Not JSON at all."
        assert parsed.tools == []

    def test_command_lines_in_text_parts_are_hidden(self):
        parsed = parse_function_calls([{"text": "Sure.\nALLOW 10"}])
        assert parsed.user_message == "Sure."
        assert parsed.tools == []

    def test_issues(self):
        parsed = parse_function_calls(
            [
                {"function_call": {"name": "allow", "args": {"minutes": -1}}},
                {"function_call": {"name": "delete_everything", "args": {}}},
            ]
        )
        assert parsed.tools == []
        assert [i.reason for i in parsed.tool_errors] == [
            ToolCallIssueReason.INVALID_ARGS,
            ToolCallIssueReason.UNSUPPORTED_TOOL,
        ]
        assert "delete_everything" in parsed.tool_errors[1].raw_text

    def test_ignores_unrecognised_parts(self):
        parsed = parse_function_calls([42, {"inline_data": "..."}, {"text": "ok"}])
        assert parsed.user_message == "ok"
        assert parsed.tools == []
        assert parsed.tool_errors == []

    @pytest.mark.parametrize(
        "call",
        [
            {"name": "allow", "args": {"minutes": 10**17}},
            {"name": "allow", "args": {"minutes": 1e30}},
            {"name": "remember", "args": {"content": "x", "minutes": str(MAX_COMMAND_MINUTES + 1)}},
        ],
    )
    def test_out_of_range_minutes_are_reported(self, call):
        parsed = parse_function_calls([call])
        assert parsed.tools == []
        assert parsed.tool_errors[0].reason == ToolCallIssueReason.INVALID_ARGS
