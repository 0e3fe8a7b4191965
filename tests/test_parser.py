import pytest

from ruleset_parser import (
    EmptyInputError,
    ParseError,
    ParseErrorKind,
    Rule,
    parse_iptables_save,
)


def test_parse_basic_structure(sample):
    ruleset = parse_iptables_save(sample)
    assert list(ruleset.tables) == ["filter", "nat"]

    filter_table = ruleset.tables["filter"]
    assert list(filter_table.chains) == ["INPUT", "FORWARD", "OUTPUT", "BLOCKLIST"]

    input_chain = filter_table.chains["INPUT"]
    assert input_chain.policy == "DROP"
    assert (input_chain.packets, input_chain.bytes) == (120, 9600)
    assert len(input_chain.rules) == 3
    assert input_chain.rules[1] == Rule(
        body="-A INPUT -p tcp -m tcp --dport 22 -j ACCEPT", packets=300, bytes=24000
    )


def test_user_defined_chain_has_no_policy(sample):
    chain = parse_iptables_save(sample).tables["filter"].chains["BLOCKLIST"]
    assert chain.policy is None
    assert [rule.body for rule in chain.rules] == [
        "-A BLOCKLIST -s 203.0.113.7/32 -j DROP",
        "-A BLOCKLIST -s 198.51.100.9/32 -j DROP",
    ]


def test_parse_is_idempotent(sample):
    assert parse_iptables_save(sample) == parse_iptables_save(sample)


def test_large_counters_are_kept_exact():
    ruleset = parse_iptables_save(
        "*filter\n:INPUT ACCEPT [18446744073709551615:1]\nCOMMIT\n"
    )
    assert ruleset.tables["filter"].chains["INPUT"].packets == 18446744073709551615


def test_table_without_commit_is_followed_by_next_table():
    ruleset = parse_iptables_save("*raw\n:PREROUTING ACCEPT [1:2]\n*mangle\n:INPUT ACCEPT [3:4]\n")
    assert list(ruleset.tables) == ["raw", "mangle"]
    assert list(ruleset.tables["mangle"].chains) == ["INPUT"]


def test_malformed_chain_counter_reports_line_number():
    dump = "*filter\n:INPUT ACCEPT [0:0]\n:CHAIN ACCEPT [x:0]\nCOMMIT\n"
    with pytest.raises(ParseError) as excinfo:
        parse_iptables_save(dump)
    assert excinfo.value.kind is ParseErrorKind.MALFORMED_CHAIN_LINE
    assert excinfo.value.line_number == 3
    assert excinfo.value.line == ":CHAIN ACCEPT [x:0]"
    assert "line 3" in str(excinfo.value)


def test_rule_for_undeclared_chain():
    dump = "*filter\n[1:1] -A UNDECLARED -j DROP\n:UNDECLARED - [0:0]\nCOMMIT\n"
    with pytest.raises(ParseError) as excinfo:
        parse_iptables_save(dump)
    assert excinfo.value.kind is ParseErrorKind.UNKNOWN_CHAIN
    assert excinfo.value.line_number == 2


def test_chains_are_scoped_to_their_table():
    dump = "*filter\n:INPUT ACCEPT [0:0]\nCOMMIT\n*nat\n[1:1] -A INPUT -j ACCEPT\nCOMMIT\n"
    with pytest.raises(ParseError) as excinfo:
        parse_iptables_save(dump)
    assert excinfo.value.kind is ParseErrorKind.UNKNOWN_CHAIN


def test_rule_without_counters_is_rejected():
    dump = "*filter\n:INPUT ACCEPT [0:0]\n-A INPUT -j ACCEPT\nCOMMIT\n"
    with pytest.raises(ParseError) as excinfo:
        parse_iptables_save(dump)
    assert excinfo.value.kind is ParseErrorKind.MALFORMED_RULE_LINE


def test_unrecognized_line():
    dump = "*filter\n:INPUT ACCEPT [0:0]\n-I INPUT -j ACCEPT\nCOMMIT\n"
    with pytest.raises(ParseError) as excinfo:
        parse_iptables_save(dump)
    assert excinfo.value.kind is ParseErrorKind.UNRECOGNIZED_LINE
    assert excinfo.value.line == "-I INPUT -j ACCEPT"


@pytest.mark.parametrize(
    "dump",
    [
        ":INPUT ACCEPT [0:0]\n",
        "*filter\n:INPUT ACCEPT [0:0]\nCOMMIT\n[1:1] -A INPUT -j ACCEPT\n",
        "*filter\nCOMMIT\nCOMMIT\n",
    ],
)
def test_lines_outside_a_table(dump):
    with pytest.raises(ParseError) as excinfo:
        parse_iptables_save(dump)
    assert excinfo.value.kind is ParseErrorKind.NO_TABLE


def test_duplicate_names():
    with pytest.raises(ParseError) as excinfo:
        parse_iptables_save("*filter\nCOMMIT\n*filter\nCOMMIT\n")
    assert excinfo.value.kind is ParseErrorKind.DUPLICATE_TABLE

    with pytest.raises(ParseError) as excinfo:
        parse_iptables_save("*filter\n:INPUT ACCEPT [0:0]\n:INPUT DROP [0:0]\nCOMMIT\n")
    assert excinfo.value.kind is ParseErrorKind.DUPLICATE_CHAIN


@pytest.mark.parametrize("dump", ["", "   \n\t\n", "# Generated by iptables-save\n# done\n"])
def test_empty_input(dump):
    with pytest.raises(EmptyInputError):
        parse_iptables_save(dump)


def test_blank_lines_are_ignored(sample):
    spaced = sample.replace("\n:", "\n\n:").replace("COMMIT\n", "\n  \nCOMMIT\n\n")
    ruleset = parse_iptables_save(spaced)
    assert ruleset == parse_iptables_save(sample)
