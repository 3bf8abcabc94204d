from clustersim.parsing.fuzzy import (
    CommandInterceptor,
    FlagDefinition,
    find_similar_strings,
    levenshtein_distance,
)


def test_levenshtein_distance():
    assert levenshtein_distance("gpu-reet", "gpu-reset") == 1
    assert levenshtein_distance("", "abc") == 3
    assert levenshtein_distance("kitten", "sitting") == 3
    assert levenshtein_distance("same", "same") == 0


def test_short_input_ranks_closest_first():
    suggestions = find_similar_strings("hlp", ["version", "help", "health"])
    assert suggestions[0] == "help"


def test_exact_match_is_not_suggested():
    assert find_similar_strings("help", ["help"]) == []


def test_suggestions_are_capped_at_three():
    assert len(find_similar_strings("abcd", ["abce", "abcf", "abcg", "abch"])) == 3


def test_interceptor_validates_flags_and_subcommands():
    interceptor = CommandInterceptor()
    interceptor.register_flags("nvidia-smi", [FlagDefinition("gpu-reset", "r"), FlagDefinition("query", "q")])
    interceptor.register_subcommands("nvidia-smi", ["topo", "nvlink"])

    assert interceptor.validate_flag("nvidia-smi", "r").exact_match
    typo = interceptor.validate_flag("nvidia-smi", "gpu-reet")
    assert not typo.exact_match
    assert typo.suggestions[0] == "gpu-reset"
    assert 0 < typo.confidence < 1
    assert CommandInterceptor.format_suggestion(typo) == "Did you mean '--gpu-reset'?"

    sub = interceptor.validate_subcommand("nvidia-smi", "tpo")
    assert CommandInterceptor.format_suggestion(sub, is_flag=False) == "Did you mean 'topo'?"


def test_unknown_tool_has_no_registry():
    result = CommandInterceptor().validate_flag("unknown", "x")
    assert result.suggestions == []
    assert not result.exact_match


def test_exact_match_ignores_case():
    interceptor = CommandInterceptor()
    interceptor.register_subcommands("dcgmi", ["help", "diag"])
    result = interceptor.validate_subcommand("dcgmi", "HELP")
    assert result.exact_match
    assert result.confidence == 1.0
    assert CommandInterceptor.format_suggestion(result, is_flag=False) == ""
