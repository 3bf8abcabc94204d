def test_ibstat_lists_cas(engine):
    names = engine.execute("ibstat -l").output.splitlines()
    assert names == [f"mlx5_{i}" for i in range(8)]


def test_ibstat_single_ca(engine):
    output = engine.execute("ibstat mlx5_1").output
    assert output.startswith("CA 'mlx5_1'")
    assert "\tCA type: ConnectX-6 HCA" in output
    assert "\t\tState: Active" in output
    assert "\t\tRate: 200" in output
    assert "CA 'mlx5_0'" not in output


def test_ibstat_unknown_ca(engine):
    result = engine.execute("ibstat mlx5_9")
    assert result.exit_code == 1
    assert "stat of IB device 'mlx5_9' failed" in result.output


def test_ibstat_without_hcas(engine):
    engine.store.get_node("dgx-00").hcas = []
    assert engine.execute("ibstat").exit_code == 1


def test_perfquery_counters_and_reset(engine):
    port = engine.store.get_node("dgx-00").hcas[0].ports[0]
    port.errors.symbol_errors = 12

    first = engine.execute("perfquery -r").output
    assert first.startswith(f"# Port counters: Lid {port.lid} port 1")
    assert f"{'SymbolErrorCounter:':.<32}12" in first

    second = engine.execute("perfquery").output
    assert f"{'SymbolErrorCounter:':.<32}0" in second


def test_perfquery_by_ca_and_lid(engine):
    hca = engine.store.get_node("dgx-00").hcas[3]
    by_name = engine.execute("perfquery -C mlx5_3 -x").output
    assert "PortCountersExtended:" in by_name
    assert f"Lid {hca.ports[0].lid}" in by_name

    by_lid = engine.execute(f"perfquery {hca.ports[0].lid} 1").output
    assert f"Lid {hca.ports[0].lid} port 1" in by_lid

    missing = engine.execute("perfquery -C mlx5_42")
    assert missing.exit_code == 1
    assert "can't open UMAD port" in missing.output
