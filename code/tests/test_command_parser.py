from clustersim.parsing.command_parser import (
    describe_parsed_command,
    get_flag_string,
    get_flag_value,
    has_flag,
    parse,
    tokenize,
)


def test_blank_line_yields_empty_command():
    assert parse("").base_command == ""
    assert parse("   ").base_command == ""


def test_raw_args_match_whitespace_split_tail():
    for line in ["nvidia-smi -q -i 0", "sinfo -N -l", "dcgmi diag -r 3 -i 0", "ibstat mlx5_0 1"]:
        assert list(parse(line).raw_args) == line.split()[1:]


def test_subcommands_flags_and_positionals():
    parsed = parse("nvidia-smi mig -cgi 19,19 -C -i 0")
    assert parsed.base_command == "nvidia-smi"
    assert parsed.subcommands == ("mig",)
    assert parsed.flags == {"cgi": "19,19", "C": True, "i": "0"}


def test_long_flag_forms():
    parsed = parse("nvidia-smi --query-gpu=name,temperature.gpu --format csv --version")
    assert parsed.flags["query-gpu"] == "name,temperature.gpu"
    assert parsed.flags["format"] == "csv"
    assert parsed.flags["version"] is True


def test_multi_character_short_flags_are_not_bundled():
    parsed = parse("nvidia-smi -lgip")
    assert parsed.flags == {"lgip": True}
    assert not has_flag(parsed, "l", "g")


def test_numeric_and_assignment_tokens_are_positional():
    parsed = parse('scontrol update NodeName=dgx-00 State=DRAIN Reason="Maintenance window"')
    assert parsed.subcommands == ("update",)
    assert parsed.positional_args == ("NodeName=dgx-00", "State=DRAIN", "Reason=Maintenance window")

    assert parse("scancel 1000").positional_args == ("1000",)


def test_double_dash_stops_flag_parsing():
    parsed = parse("srun -- python -v train.py")
    assert parsed.flags == {}
    assert parsed.subcommands == ("python", "-v", "train.py")


def test_quotes_and_escapes():
    assert tokenize("echo 'single quoted' \"double quoted\"") == ["echo", "single quoted", "double quoted"]
    assert tokenize(r'grep \"xid\"') == ["grep", '"xid"']
    assert tokenize('say "she said \\"hi\\""') == ["say", 'she said "hi"']


def test_flag_helpers():
    parsed = parse("nvidia-smi -q -i 3")
    assert has_flag(parsed, "query", "q")
    assert get_flag_value(parsed, "q") is True
    assert get_flag_string(parsed, ["id", "i"]) == "3"
    assert get_flag_string(parsed, ["q"], "fallback") == "fallback"
    assert get_flag_value(parsed, "missing") is None


def test_describe_parsed_command():
    text = describe_parsed_command(parse("dcgmi diag -r 3 extra=1"))
    assert "Base command: dcgmi" in text
    assert "Subcommands: diag" in text
    assert "--r=3" in text
