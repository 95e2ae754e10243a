import pytest

from clinic.exceptions import InvalidTransferFormat
from clinic.services.transfer_code import (
    generate_transfer_content,
    parse_transfer_content,
    validate_transfer_content,
)


def test_generate_uses_last_eight_characters_of_order_code():
    c = generate_transfer_content("DH17031234567891234", 42)
    assert c.prefix == "DH"
    assert c.suffix == "67891234"
    assert c.full_content == "DH67891234"
    assert validate_transfer_content(c.full_content)


def test_generate_keeps_non_numeric_tail_and_validate_rejects_it():
    # the generic generator only inherits the order code's characters
    c = generate_transfer_content("DH1703123456789ABC", 42)
    assert c.suffix == "56789ABC"
    assert not validate_transfer_content(c.full_content)


def test_short_order_code_is_extended_with_user_id_digits():
    c = generate_transfer_content("7", 42)
    assert c.suffix == "742"


def test_short_order_code_and_short_user_id_are_zero_padded():
    c = generate_transfer_content("", 5)
    assert c.suffix == "500"
    assert c.full_content == "DH500"


def test_custom_prefix():
    c = generate_transfer_content("DH17031234567891234", 1, prefix="PAY")
    assert c.full_content == "PAY67891234"


@pytest.mark.parametrize("prefix", ["", "X", "TOOLONG"])
def test_prefix_length_is_enforced(prefix):
    with pytest.raises(InvalidTransferFormat):
        generate_transfer_content("DH123456", 1, prefix=prefix)


def test_parse_picks_smallest_prefix():
    p = parse_transfer_content("DH123456")
    assert p.is_valid
    assert (p.prefix, p.suffix) == ("DH", "123456")


def test_parse_skips_to_first_numeric_remainder():
    p = parse_transfer_content("PAYX12345")
    assert p.is_valid
    assert (p.prefix, p.suffix) == ("PAYX", "12345")


@pytest.mark.parametrize("content", ["", "DH12", "DH123456789012345", "DHABCDEF", "DH12A45", "ABCDEF12", "DH１２３４５"])
def test_invalid_contents(content):
    p = parse_transfer_content(content)
    assert not p.is_valid
    assert p.prefix == "" and p.suffix == ""
    assert not validate_transfer_content(content)


@pytest.mark.parametrize("content", ["DH123", "DH0000000000", "ABCDE1234567890", "PAY12345", "1234567"])
def test_parse_reassembles_what_validate_accepts(content):
    assert validate_transfer_content(content)
    p = parse_transfer_content(content)
    assert p.is_valid
    assert p.prefix + p.suffix == content
