from __future__ import annotations

import pytest

from ledger_import.errors import EmptyInputError
from ledger_import.ingest.tabular import detect_delimiter, detect_header, parse_table


def test_detect_delimiter_precedence() -> None:
    assert detect_delimiter("a;b,c") == ";"
    assert detect_delimiter("a\tb,c") == "\t"
    assert detect_delimiter("a|b") == "|"
    assert detect_delimiter("a,b") == ","
    assert detect_delimiter("single") == ","


def test_parse_semicolon_export_with_header() -> None:
    text = "Dato;Tekst;Beløb\n15-01-2024;NETFLIX.COM;-99,00\n15-02-2024;NETFLIX.COM;-99,00\n"
    table = parse_table(text)
    assert table.delimiter == ";"
    assert table.has_header is True
    assert table.header == ("Dato", "Tekst", "Beløb")
    assert table.data_rows == (
        ("15-01-2024", "NETFLIX.COM", "-99,00"),
        ("15-02-2024", "NETFLIX.COM", "-99,00"),
    )


def test_parse_quoted_fields_and_doubled_quotes() -> None:
    text = 'Date,Description,Amount\n2024-01-02,"Shop, ""Best"" Deals",-10.00\n'
    table = parse_table(text)
    assert table.data_rows == (("2024-01-02", 'Shop, "Best" Deals', "-10.00"),)


def test_parse_drops_short_and_blank_rows() -> None:
    text = "Date,Description,Amount\n\n,,\nlonely\n2024-01-02,Coffee,-3.50\n"
    table = parse_table(text)
    assert table.data_rows == (("2024-01-02", "Coffee", "-3.50"),)


def test_headerless_input_and_override() -> None:
    text = "2024-01-02;Coffee;-3,50\n2024-01-03;Bakery;-12,00\n"
    table = parse_table(text)
    assert table.has_header is False
    assert len(table.data_rows) == 2
    assert table.column_labels() == ["Column 1", "Column 2", "Column 3"]
    assert table.with_header(True).data_rows == (("2024-01-03", "Bakery", "-12,00"),)


def test_leading_bom_is_ignored() -> None:
    table = parse_table("\ufeffDate,Text,Amount\n2024-01-02,Coffee,-3.50\n")
    assert table.header == ("Date", "Text", "Amount")


def test_detect_header_matches_whole_words_only() -> None:
    assert detect_header(["Booking date", "Text", "Amount"])
    # "Summit" must not be read as the "sum" alias.
    assert not detect_header(["2024-01-02", "Summit Outfitters", "-10.00"])


@pytest.mark.parametrize("text", ["", "   \n\n", "only-one-cell\n", ",\n,,\n"])
def test_empty_input_raises(text: str) -> None:
    with pytest.raises(EmptyInputError):
        parse_table(text)


def test_unpaired_quote_stays_on_its_own_line() -> None:
    text = "Date,Description,Amount\n2024-01-05,\"Joe's Cafe,-10.00\n2024-01-06,IRMA,-20.00\n"
    table = parse_table(text)
    assert len(table.data_rows) == 2
    assert table.data_rows[0][0] == "2024-01-05"
    assert table.data_rows[1] == ("2024-01-06", "IRMA", "-20.00")


@pytest.mark.parametrize("delimiter", [";", "\t", "|"])
def test_every_delimiter_parses_like_the_comma_form(delimiter: str) -> None:
    comma = parse_table("2024-01-02,Bakery,-12.00\n")
    table = parse_table(delimiter.join(["2024-01-02", "Bakery", "-12.00"]) + "\n")
    assert table.delimiter == delimiter
    assert table.rows == comma.rows


@pytest.mark.parametrize("delimiter", [",", ";", "\t", "|"])
def test_quoted_cell_may_hold_the_delimiter(delimiter: str) -> None:
    line = delimiter.join(["2024-01-02", f'"Shop{delimiter} Deals"', "-10.00"])
    table = parse_table(line + "\n")
    assert table.rows == (("2024-01-02", f"Shop{delimiter} Deals", "-10.00"),)
