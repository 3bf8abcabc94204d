from clustersim.parsing.pipes import apply_pipe_filters, has_pipes, primary_command, split_pipe_chain


def test_split_respects_quotes():
    assert split_pipe_chain("dmesg | grep 'a|b' | head -n 1") == ["dmesg", "grep 'a|b'", "head -n 1"]
    assert primary_command("nvidia-smi -L | wc -l") == "nvidia-smi -L"
    assert not has_pipes('grep "x|y"')


def test_sort_then_uniq_counts():
    result = apply_pipe_filters("a\nb\na", "cat | sort | uniq -c")
    assert result.split("\n") == ["      2 a", "      1 b"]


def test_grep_variants():
    text = "GPU 0: ok\nGPU 1: Xid 79\nGPU 2: ok"
    assert apply_pipe_filters(text, "x | grep Xid") == "GPU 1: Xid 79"
    assert apply_pipe_filters(text, "x | grep -i xid") == "GPU 1: Xid 79"
    assert apply_pipe_filters(text, "x | grep -v ok") == "GPU 1: Xid 79"
    assert apply_pipe_filters(text, "x | grep -E 'GPU [02]'").count("\n") == 1


def test_head_tail_wc():
    text = "\n".join(str(i) for i in range(20))
    assert apply_pipe_filters(text, "x | head -n 3") == "0\n1\n2"
    assert apply_pipe_filters(text, "x | tail -2") == "18\n19"
    assert apply_pipe_filters(text, "x | wc -l").strip() == "20"


def test_zero_line_count_prints_nothing():
    text = "\n".join(str(i) for i in range(20))
    assert apply_pipe_filters(text, "x | head -n 0") == ""
    assert apply_pipe_filters(text, "x | tail -n 0") == ""
    assert apply_pipe_filters(text, "x | head -n ten") == "\n".join(str(i) for i in range(10))


def test_cut_and_awk():
    text = "a,b,c\nd,e,f"
    assert apply_pipe_filters(text, "x | cut -d, -f2") == "b\ne"
    assert apply_pipe_filters("one two three", "x | awk '{print $3, $1}'") == "three one"


def test_numeric_sort_and_unknown_filter():
    assert apply_pipe_filters("10\n9\n100", "x | sort -n") == "9\n10\n100"
    assert apply_pipe_filters("keep", "x | less") == "keep"
