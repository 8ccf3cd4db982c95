"""
Envelope Decoding Tests
"""

from app.integrations.market_data import envelope


def test_unwrap_envelope():
    assert envelope.unwrap(["com.example.Metrics", {"a": 1}]) == {"a": 1}
    assert envelope.unwrap(["com.example.Interpretation", "LONG_UNWINDING"]) == "LONG_UNWINDING"


def test_unwrap_leaves_plain_values():
    assert envelope.unwrap({"a": 1}) == {"a": 1}
    assert envelope.unwrap([1, 2]) == [1, 2]
    assert envelope.unwrap(["a", "b", "c"]) == ["a", "b", "c"]
    assert envelope.unwrap(3.5) == 3.5


def test_loads():
    assert envelope.loads('["com.example.Metrics", {"a": 1}]') == {"a": 1}
    assert envelope.loads('{"a": 1}') == {"a": 1}
    assert envelope.loads("not json") is None
    assert envelope.loads("") is None
    assert envelope.loads(None) is None


def test_field_readers():
    data = {
        "daily": ["com.example.Pivot", {"r1": 24540.0}],
        "interpretation": ["com.example.Interpretation", "SHORT_BUILDUP"],
        "confidence": "0.75",
        "flag": True,
        "nested": {"x": 1},
    }

    assert envelope.get_object(data, "daily") == {"r1": 24540.0}
    assert envelope.get_object(data, "interpretation") is None
    assert envelope.get_text(data, "interpretation") == "SHORT_BUILDUP"
    assert envelope.get_text(data, "nested") is None
    assert envelope.get_float(data, "confidence") == 0.75
    assert envelope.get_float(data, "flag", default=-1.0) == -1.0
    assert envelope.get_float(data, "missing") == 0.0
    assert envelope.get_float(None, "confidence") == 0.0
