"""测试模型输出解析器"""

from buildagent.agents.result_parser import (
    extract_json_object,
    parse_terminal_payload,
    remove_trailing_commas,
    strip_code_fences,
)


class TestExtractJsonObject:
    """JSON 提取测试"""

    def test_plain(self) -> None:
        assert extract_json_object('{"grade": "A"}') == {"grade": "A"}

    def test_code_fence(self) -> None:
        text = '```json\n{"grade": "A", "mustFix": []}\n```'
        assert extract_json_object(text) == {"grade": "A", "mustFix": []}

    def test_surrounding_prose(self) -> None:
        """测试前后带说明文字"""
        text = 'Here is my review:\n{"approved": true, "grade": "B"}\nThanks.'
        assert extract_json_object(text) == {"approved": True, "grade": "B"}

    def test_trailing_commas(self) -> None:
        assert extract_json_object('{"a": [1, 2,],}') == {"a": [1, 2]}
        assert remove_trailing_commas("[1, 2,\n]") == "[1, 2\n]"

    def test_not_json(self) -> None:
        assert extract_json_object("Looks good to me.") is None
        assert extract_json_object("") is None
        assert extract_json_object("[1, 2]") is None

    def test_strip_code_fences(self) -> None:
        assert strip_code_fences("```python\nx = 1\n```") == "x = 1"


class TestParseTerminalPayload:
    """旧式 JSON 终止信号测试"""

    def test_final_response(self) -> None:
        text = '{"action": "final_response", "message": "All done"}'
        assert parse_terminal_payload(text) == "All done"

    def test_nested_parameters(self) -> None:
        text = '{"action": "final_response", "parameters": {"message": "Built it"}}'
        assert parse_terminal_payload(text) == "Built it"

    def test_missing_message_falls_back_to_text(self) -> None:
        text = '{"action": "final_response"}'
        assert parse_terminal_payload(text) == text

    def test_other_actions(self) -> None:
        assert parse_terminal_payload('{"action": "read_file"}') is None
        assert parse_terminal_payload("Hello!") is None
