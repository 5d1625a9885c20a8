import re

from loanservice.ids import new_id32

HEX32 = re.compile(r"^[a-f0-9]{32}$")


def test_new_id32_format_and_decode():
    got = new_id32()
    assert len(got) == 32
    assert HEX32.match(got)
    assert len(bytes.fromhex(got)) == 16


def test_new_id32_uniqueness():
    seen = {new_id32() for _ in range(200)}
    assert len(seen) == 200


def test_new_id32_no_uppercase_or_hyphen():
    value = new_id32()
    assert value == value.lower()
    assert "-" not in value