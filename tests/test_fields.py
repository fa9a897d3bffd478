import pytest

from sienge_transfer.fields import (
    ResponseFormatError,
    decode_object,
    decode_object_list,
    get_bool,
    get_float,
    get_int,
    get_int_flexible,
    get_string,
    value_to_string,
)


def test_decode_object_list_accepts_array():
    assert decode_object_list(b'[{"resourceId": 3421}, {"resourceId": 9876}]') == [
        {"resourceId": 3421},
        {"resourceId": 9876},
    ]


@pytest.mark.parametrize("key", ["results", "resultados", "items", "data"])
def test_decode_object_list_accepts_wrappers(key):
    body = '{"%s": [{"id": 121}]}' % key
    assert decode_object_list(body) == [{"id": 121}]


def test_decode_object_list_skips_null_wrapper_key():
    assert decode_object_list('{"results": null, "data": [{"id": 5}]}') == [{"id": 5}]


def test_decode_object_list_accepts_empty_list():
    assert decode_object_list('{"results": []}') == []


@pytest.mark.parametrize(
    "body",
    ['{"other": [1]}', '"texto"', '[{"id": 1}, 2]', "{", ""],
)
def test_decode_object_list_rejects_bad_shapes(body):
    with pytest.raises(ResponseFormatError):
        decode_object_list(body)


def test_decode_object_returns_mapping():
    assert decode_object(b'{"id": 121, "description": "Residencial"}') == {
        "id": 121,
        "description": "Residencial",
    }


@pytest.mark.parametrize("body", ["null", "[1]", "not json"])
def test_decode_object_rejects_non_objects(body):
    with pytest.raises(ResponseFormatError):
        decode_object(body)


def test_get_int_reads_string_and_skips_missing():
    assert get_int({"supplyId": " 3421 "}, "resourceId", "supplyId") == 3421


def test_get_int_skips_fractional_json_literal():
    obj = decode_object('{"id": 3.5, "code": 205}')
    assert get_int(obj, "id", "code") == 205


def test_get_int_returns_none_when_absent_or_invalid():
    assert get_int({"id": "abc", "flag": True}, "id", "flag", "missing") is None


def test_get_float_accepts_comma_decimal():
    assert get_float({"availableQuantity": "15,5"}, "availableQuantity") == 15.5


def test_get_float_reads_integer_and_rejects_underscore():
    assert get_float({"a": "1_0", "b": 40}, "a", "b") == 40.0
    assert get_float({"a": "x"}, "a") is None


def test_get_bool_variants():
    assert get_bool({"isBlocked": "true"}, "isBlocked") is True
    assert get_bool({"blocked": 0}, "blocked") is False
    assert get_bool({"blocked": "maybe"}, "blocked") is None


def test_get_string_prefers_first_non_empty_and_strips():
    obj = {"name": "   ", "description": "  Cimento  "}
    assert get_string(obj, "name", "description") == "Cimento"


def test_get_string_reads_nested_description():
    assert get_string({"brand": {"description": "Votoran"}}, "brand") == "Votoran"


def test_get_string_keeps_number_literal():
    obj = decode_object('{"code": 946.0}')
    assert get_string(obj, "code") == "946.0"


def test_value_to_string_formats_plain_float_without_trailing_zeros():
    assert value_to_string(10.0) == "10"
    assert value_to_string(0.5) == "0.5"
    assert value_to_string(True) == ""


def test_get_int_flexible_reads_nested_id():
    assert get_int_flexible({"product": {"id": 1001}}, "productId", "product") == 1001
    assert get_int_flexible({"productId": "1001"}, "productId") == 1001
    assert get_int_flexible({"product": {"name": "x"}}, "product") is None