"""Tests for filter expression parsing and evaluation."""

import pytest

from xbridge.errors import FilterSyntaxError, MissingNameExpression
from xbridge.filtering.expressions import (
    compare,
    get_nested_value,
    parse_clause,
    parse_expression,
    parse_filters,
    wildcard_match,
)


# ── Parsing ──────────────────────────────────────────────────────────


def test_parse_simple_expression():
    expr = parse_expression("name=express")
    assert expr.attribute == "name"
    assert expr.operator == "="
    assert expr.value == "express"
    assert expr.is_name
    assert not expr.is_wildcard


@pytest.mark.parametrize(
    "text,operator,value",
    [
        ("version>=2.0", ">=", "2.0"),
        ("version<=2", "<=", "2"),
        ("downloads>100", ">", "100"),
        ("downloads<5", "<", "5"),
        ("license!=MIT", "!=", "MIT"),
        ("license<>MIT", "!=", "MIT"),
    ],
)
def test_parse_operators(text, operator, value):
    expr = parse_expression(text)
    assert expr.operator == operator
    assert expr.value == value


def test_parse_dotted_attribute():
    expr = parse_expression("labels.stage=prod")
    assert expr.attribute == "labels.stage"
    assert not expr.is_name


@pytest.mark.parametrize("text", ["name", "=value", "name==x", "name=<x", "bad attr=1", "1abc=2"])
def test_parse_rejects_malformed_expression(text):
    with pytest.raises(FilterSyntaxError):
        parse_expression(text)


def test_parse_clause_splits_on_commas():
    clause = parse_clause("name=*react*,license=MIT")
    assert [str(e) for e in clause.expressions] == ["name=*react*", "license=MIT"]
    assert [str(e) for e in clause.name_expressions] == ["name=*react*"]
    assert clause.has_metadata_predicates


@pytest.mark.parametrize("raw", ["", "   ", "name=a,", ",name=a", "name=a,,license=MIT"])
def test_parse_clause_rejects_empty_parts(raw):
    with pytest.raises(FilterSyntaxError):
        parse_clause(raw)


def test_parse_filters_rejects_whole_request_on_one_bad_clause():
    with pytest.raises(FilterSyntaxError):
        parse_filters(["name=ok", "license"])


def test_require_name():
    parse_clause("name=x,license=MIT").require_name()
    with pytest.raises(MissingNameExpression) as info:
        parse_clause("license=MIT").require_name()
    assert info.value.clause == "license=MIT"


# ── Wildcards ────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "value,expected",
    [
        ("test-package", True),
        ("my-test", True),
        ("latest", True),
        ("test", True),
        ("express", False),
    ],
)
def test_contains_wildcard(value, expected):
    assert wildcard_match("*test*", value) is expected


def test_prefix_and_suffix_wildcards():
    assert wildcard_match("react*", "react-dom")
    assert not wildcard_match("react*", "preact")
    assert wildcard_match("*-dom", "react-dom")
    assert not wildcard_match("*-dom", "react-dom-server")


def test_wildcard_treats_other_characters_literally():
    assert wildcard_match("a?c*", "a?cd")
    assert not wildcard_match("a?c*", "abcd")
    assert wildcard_match("[x]*", "[x]y")
    assert wildcard_match("a.b", "a.b")
    assert not wildcard_match("a.b", "axb")


def test_wildcard_case_sensitivity():
    assert not wildcard_match("*Test*", "my-test")
    assert wildcard_match("*Test*", "my-test", case_sensitive=False)


# ── Comparison ───────────────────────────────────────────────────────


def test_equality_is_case_sensitive_by_default():
    expr = parse_expression("license=MIT")
    assert compare("MIT", expr)
    assert not compare("mit", expr)
    assert compare("mit", expr, case_sensitive=False)


def test_numeric_comparison():
    assert compare(150, parse_expression("downloads>100"))
    assert not compare(50, parse_expression("downloads>100"))
    assert compare("10", parse_expression("count>=9"))
    assert compare(2, parse_expression("major>=2.0"))


def test_equality_compares_text_not_numbers():
    assert compare(2, parse_expression("major=2"))
    assert not compare(2, parse_expression("major=2.0"))
    assert not compare("1.10", parse_expression("version=1.1"))
    assert compare("1.10", parse_expression("version!=1.1"))
    assert compare("nan", parse_expression("name=nan"))
    assert not compare("Infinity", parse_expression("name=inf"))


def test_string_ordering_falls_back_to_text():
    assert compare("beta", parse_expression("tag>alpha"))
    assert not compare("alpha", parse_expression("tag>beta"))


def test_null_and_missing_values():
    assert compare(None, parse_expression("deprecated=null"))
    assert not compare("yes", parse_expression("deprecated=null"))
    assert not compare(None, parse_expression("license=MIT"))
    assert compare(None, parse_expression("license!=MIT"))
    assert not compare(None, parse_expression("downloads>1"))


def test_lone_star_matches_any_present_value():
    expr = parse_expression("license=*")
    assert compare("Apache-2.0", expr)
    assert compare("", expr)
    assert not compare(None, expr)


def test_booleans_compare_as_text():
    assert compare(True, parse_expression("deprecated=true"))
    assert not compare(False, parse_expression("deprecated=true"))


def test_get_nested_value():
    data = {"labels": {"stage": "prod"}, "name": "x"}
    assert get_nested_value(data, "labels.stage") == "prod"
    assert get_nested_value(data, "labels.missing") is None
    assert get_nested_value(data, "name.first") is None


# ── Clause semantics ─────────────────────────────────────────────────


def test_same_attribute_is_ored_different_attributes_are_anded():
    clause = parse_clause("name=*,license=MIT,license=ISC,author=alice")
    assert clause.matches_metadata({"license": "ISC", "author": "alice"})
    assert clause.matches_metadata({"license": "MIT", "author": "alice"})
    assert not clause.matches_metadata({"license": "GPL", "author": "alice"})
    assert not clause.matches_metadata({"license": "MIT", "author": "bob"})


def test_name_only_clause_matches_any_metadata():
    clause = parse_clause("name=react")
    assert not clause.has_metadata_predicates
    assert clause.matches_metadata({})


def test_matches_name_ors_name_expressions():
    clause = parse_clause("name=react,name=vue")
    assert clause.matches_name("react")
    assert clause.matches_name("vue")
    assert not clause.matches_name("angular")
